from .decision_engine import ViolationDecisionEngine, Candidate
from .risk_aggregator import RiskAggregator, aggregate_risk

__all__ = ["ViolationDecisionEngine", "Candidate", "RiskAggregator", "aggregate_risk"]
