from .history import TemporalHistory
from .analyzer import TemporalConsistencyAnalyzer, classify_change

__all__ = ["TemporalHistory", "TemporalConsistencyAnalyzer", "classify_change"]
