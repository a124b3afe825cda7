from .frame_quality import check_frame_quality
from .logging import (
    log_monitor_event,
    log_scan_start,
    log_scan_end,
    log_violation,
    log_plugin_degraded,
)

__all__ = [
    "check_frame_quality",
    "log_monitor_event",
    "log_scan_start",
    "log_scan_end",
    "log_violation",
    "log_plugin_degraded",
]
