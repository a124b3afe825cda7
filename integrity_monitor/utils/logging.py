"""
Monitor Logger - Logs scan lifecycle events and violations
"""

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def log_monitor_event(
    scan_id: str,
    event_type: str,
    details: Optional[Dict[str, Any]] = None,
    level: str = "info"
):
    """
    Log a monitoring event.

    Args:
        scan_id: Scan ID
        event_type: Type of event (scan_start, violation, plugin_degraded, etc.)
        details: Optional event details
        level: Log level (debug, info, warning, error)
    """
    parts = [f"[MONITOR] scan={scan_id} event={event_type}"]
    parts.extend(f"{k}={v}" for k, v in (details or {}).items())

    logger.log(getattr(logging, level.upper(), logging.INFO), " ".join(parts))


def log_scan_start(scan_id: str, plugins: list, duration_ms: Optional[float], frame_rate: float):
    """Log scan start event"""
    log_monitor_event(
        scan_id=scan_id,
        event_type="scan_start",
        details={
            "plugins": ",".join(plugins),
            "duration_ms": duration_ms if duration_ms is not None else "unbounded",
            "frame_rate": frame_rate
        }
    )


def log_scan_end(scan_id: str, state: str, risk_score: int, violations: int, frames: int):
    """Log scan end event"""
    log_monitor_event(
        scan_id=scan_id,
        event_type="scan_end",
        details={
            "state": state,
            "risk_score": risk_score,
            "violations": violations,
            "frames_processed": frames
        },
        level="info" if state == "completed" else "error"
    )


def log_violation(scan_id: str, violation_type: str, severity: str, confidence: float, auto_block: bool):
    """Log when a violation is emitted"""
    log_monitor_event(
        scan_id=scan_id,
        event_type="violation",
        details={
            "type": violation_type,
            "severity": severity,
            "confidence": round(confidence, 2),
            "auto_block": auto_block
        },
        level="warning"
    )


def log_plugin_degraded(scan_id: str, plugin: str, reason: str):
    """Log a plugin whose signal was degraded for a frame"""
    log_monitor_event(
        scan_id=scan_id,
        event_type="plugin_degraded",
        details={
            "plugin": plugin,
            "reason": reason
        },
        level="warning"
    )
