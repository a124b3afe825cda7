from .aggregator import ScanMetrics

__all__ = ["ScanMetrics"]
