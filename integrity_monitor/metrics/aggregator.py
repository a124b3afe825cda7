"""
Scan Metrics - Aggregates per-plugin signal statistics for a scan
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable

from ..types import Signal, Violation, violation_type_name

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ScanMetrics:
    """
    Aggregates signal and violation statistics for one scan.

    Feeds the signals summary, quality score and confidence score of
    the ScanResult.
    """

    scan_id: str

    frame_count: int = 0

    # Per signal kind
    signal_counts: Dict[str, int] = field(default_factory=dict)
    accepted_counts: Dict[str, int] = field(default_factory=dict)
    confidence_sums: Dict[str, float] = field(default_factory=dict)

    # Degradation by reason, per plugin
    timeout_counts: Dict[str, int] = field(default_factory=dict)
    failure_counts: Dict[str, int] = field(default_factory=dict)
    busy_counts: Dict[str, int] = field(default_factory=dict)

    violation_counts: Dict[str, int] = field(default_factory=dict)

    started_at: datetime = field(default_factory=_utcnow)
    last_frame_at: datetime = field(default_factory=_utcnow)

    def update(self, signals: Iterable[Signal]):
        """
        Update metrics from one frame's signals.

        Args:
            signals: Signals produced by all plugins for the frame
        """
        self.frame_count += 1
        self.last_frame_at = _utcnow()

        for signal in signals:
            kind = signal.kind.value
            self.signal_counts[kind] = self.signal_counts.get(kind, 0) + 1
            if signal.absent:
                continue
            self.accepted_counts[kind] = self.accepted_counts.get(kind, 0) + 1
            self.confidence_sums[kind] = self.confidence_sums.get(kind, 0.0) + signal.confidence

    def record_degraded(self, plugin: str, reason: str):
        if reason == "timeout":
            counts = self.timeout_counts
        elif reason == "busy":
            counts = self.busy_counts
        else:
            counts = self.failure_counts
        counts[plugin] = counts.get(plugin, 0) + 1

    def record_violations(self, violations: Iterable[Violation]):
        for violation in violations:
            name = violation_type_name(violation.type)
            self.violation_counts[name] = self.violation_counts.get(name, 0) + 1

    def acceptance_ratio(self) -> float:
        """Share of expected signals that arrived non-degraded"""
        total = sum(self.signal_counts.values())
        if total == 0:
            return 0.0
        return sum(self.accepted_counts.values()) / total

    def mean_confidence(self, default: float = 0.5) -> float:
        accepted = sum(self.accepted_counts.values())
        if accepted == 0:
            return default
        return sum(self.confidence_sums.values()) / accepted

    def get_summary(self) -> Dict[str, Any]:
        """
        Get complete metrics summary.

        Returns:
            Dict with frame count, per-kind signal stats and degradations
        """
        per_kind = {}
        for kind, count in self.signal_counts.items():
            accepted = self.accepted_counts.get(kind, 0)
            per_kind[kind] = {
                "signals": count,
                "accepted": accepted,
                "mean_confidence": round(self.confidence_sums.get(kind, 0.0) / accepted, 4) if accepted else 0.0,
            }

        return {
            "scan_id": self.scan_id,
            "frame_count": self.frame_count,
            "signals": per_kind,
            "degraded": {
                "timeouts": dict(self.timeout_counts),
                "failures": dict(self.failure_counts),
                "busy": dict(self.busy_counts),
            },
            "violations": dict(self.violation_counts),
            "acceptance_ratio": round(self.acceptance_ratio(), 4),
            "started_at": self.started_at.isoformat(),
            "last_frame_at": self.last_frame_at.isoformat(),
        }
