"""
Integrity Monitor Errors

Violations are never errors; these cover lifecycle and configuration
failures of the monitoring engine itself.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Error categories reported to the on_error observer"""
    INITIALIZATION = "initialization"
    PLUGIN_TIMEOUT = "plugin_timeout"
    FRAME_SOURCE_EXHAUSTED = "frame_source_exhausted"
    SCAN_IN_PROGRESS = "scan_in_progress"
    CONFIG_VALIDATION = "config_validation"
    SCAN_FAILED = "scan_failed"


class IntegrityMonitorError(Exception):
    """Base class for all engine errors"""

    kind: ErrorKind = ErrorKind.SCAN_FAILED


class InitializationError(IntegrityMonitorError):
    """Missing frame source, plugins or calibration profile"""

    kind = ErrorKind.INITIALIZATION


class PluginTimeout(IntegrityMonitorError):
    """A detector plugin exceeded its time limit (recovered locally)"""

    kind = ErrorKind.PLUGIN_TIMEOUT

    def __init__(self, plugin_name: str, timeout_s: float):
        self.plugin_name = plugin_name
        self.timeout_s = timeout_s
        super().__init__(f"Plugin '{plugin_name}' did not return within {timeout_s * 1000:.0f}ms")


class FrameSourceExhausted(IntegrityMonitorError):
    """The frame source ran out of frames before the scan finished"""

    kind = ErrorKind.FRAME_SOURCE_EXHAUSTED


class ScanInProgress(IntegrityMonitorError):
    """start_scan was called while a scan is already running"""

    kind = ErrorKind.SCAN_IN_PROGRESS


class ConfigValidationError(IntegrityMonitorError):
    """Configuration values are outside their valid ranges"""

    kind = ErrorKind.CONFIG_VALIDATION
