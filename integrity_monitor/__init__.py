"""
Integrity Monitor - Exam integrity signal fusion

Detector plugins observe webcam frames; the orchestrator fuses their
signals over time into violations and a session risk score.
"""

from .calibration import CalibrationProfile, HeadPoseBounds, IdentityProfile, LightingBaseline
from .config import MonitorSettings, build_settings
from .exceptions import (
    ConfigValidationError,
    ErrorKind,
    FrameSourceExhausted,
    InitializationError,
    IntegrityMonitorError,
    PluginTimeout,
    ScanInProgress,
)
from .frame_source import FrameSource, IterableFrameSource, QueueFrameSource, VideoFileFrameSource
from .orchestrator import ScanOrchestrator
from .scoring import RiskAggregator, ViolationDecisionEngine
from .temporal import TemporalConsistencyAnalyzer
from .types import (
    Frame,
    RiskLevel,
    RiskScore,
    ScanCallbacks,
    ScanResult,
    ScanState,
    Severity,
    Signal,
    SignalKind,
    Violation,
    ViolationTier,
    ViolationType,
)

__version__ = "1.0.0"

__all__ = [
    "CalibrationProfile",
    "HeadPoseBounds",
    "IdentityProfile",
    "LightingBaseline",
    "MonitorSettings",
    "build_settings",
    "ConfigValidationError",
    "ErrorKind",
    "FrameSourceExhausted",
    "InitializationError",
    "IntegrityMonitorError",
    "PluginTimeout",
    "ScanInProgress",
    "FrameSource",
    "IterableFrameSource",
    "QueueFrameSource",
    "VideoFileFrameSource",
    "ScanOrchestrator",
    "RiskAggregator",
    "ViolationDecisionEngine",
    "TemporalConsistencyAnalyzer",
    "Frame",
    "RiskLevel",
    "RiskScore",
    "ScanCallbacks",
    "ScanResult",
    "ScanState",
    "Severity",
    "Signal",
    "SignalKind",
    "Violation",
    "ViolationTier",
    "ViolationType",
]
