"""
Core Types - Frames, signals, violations and scan results
"""

import uuid
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import cv2
import numpy as np


class SignalKind(str, Enum):
    """Kinds of evidence a detector plugin can produce"""
    FACE = "face"
    GAZE = "gaze"
    LIGHTING = "lighting"
    REFLECTION = "reflection"
    OBJECT = "object"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ViolationType(str, Enum):
    """
    Built-in violation taxonomy.

    Violation.type is a plain string so configuration can add types
    (e.g. a new object label mapped to its own violation type).
    """
    FACE_ABSENT = "face-absent"
    MULTIPLE_PERSONS = "multiple-persons"
    IDENTITY_MISMATCH = "identity-mismatch"
    GAZE_OFF_SCREEN = "gaze-off-screen"
    HEAD_POSE_OUT_OF_RANGE = "head-pose-out-of-range"
    LIGHTING_MANIPULATION = "lighting-manipulation"
    ENVIRONMENTAL_TAMPERING = "environmental-tampering"
    HIDDEN_SCREENS = "hidden-screens"
    MIRROR_REFLECTION_RISK = "mirror-reflection-risk"
    UNAUTHORIZED_MATERIALS = "unauthorized-materials"
    ELECTRONIC_DEVICES = "electronic-devices"


class ViolationTier(str, Enum):
    """Action tier derived from confidence thresholds"""
    BLOCK = "block"
    REVIEW = "review"
    WARNING = "warning"
    INFO = "info"


class ChangeSeverity(str, Enum):
    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"
    CRITICAL = "critical"


class ScanState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    COMPLETED = "completed"
    FAILED = "failed"


class RiskLevel(str, Enum):
    MINIMAL = "minimal"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ------------------------------------------------------------------
# Frames
# ------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class Frame:
    """
    Immutable RGBA image with its capture timestamp.

    The pixel buffer is made read-only so plugins running concurrently
    cannot mutate the frame they share.
    """
    pixels: np.ndarray
    width: int
    height: int
    timestamp: float

    def __post_init__(self):
        if self.pixels.ndim != 3 or self.pixels.shape[2] != 4:
            raise ValueError(f"Frame pixels must be HxWx4 RGBA, got shape {self.pixels.shape}")
        if self.pixels.shape[0] != self.height or self.pixels.shape[1] != self.width:
            raise ValueError("Frame width/height do not match pixel buffer")
        if self.pixels.dtype != np.uint8:
            raise ValueError(f"Frame pixels must be uint8, got {self.pixels.dtype}")
        if self.pixels.flags.writeable:
            pixels = self.pixels.copy()
            pixels.flags.writeable = False
            object.__setattr__(self, "pixels", pixels)

    @classmethod
    def from_rgba(cls, pixels: np.ndarray, timestamp: float) -> "Frame":
        return cls(pixels=pixels, width=pixels.shape[1], height=pixels.shape[0], timestamp=timestamp)

    @classmethod
    def from_bgr(cls, image: np.ndarray, timestamp: float) -> "Frame":
        """Build a frame from an OpenCV BGR (or grayscale) image"""
        if image.ndim == 2:
            rgba = cv2.cvtColor(image, cv2.COLOR_GRAY2RGBA)
        elif image.shape[2] == 4:
            rgba = cv2.cvtColor(image, cv2.COLOR_BGRA2RGBA)
        else:
            rgba = cv2.cvtColor(image, cv2.COLOR_BGR2RGBA)
        return cls.from_rgba(rgba, timestamp)

    def to_bgr(self) -> np.ndarray:
        return cv2.cvtColor(self.pixels, cv2.COLOR_RGBA2BGR)

    def to_gray(self) -> np.ndarray:
        return cv2.cvtColor(self.pixels, cv2.COLOR_RGBA2GRAY)


# ------------------------------------------------------------------
# Signal payloads
# ------------------------------------------------------------------

BoundingBox = Tuple[int, int, int, int]  # x, y, w, h


@dataclass(frozen=True, eq=False)
class FacePayload:
    face_count: int
    bbox: Optional[BoundingBox] = None
    landmarks: Optional[np.ndarray] = None  # (68, 2) for the primary face
    identity_similarity: Optional[float] = None


@dataclass(frozen=True)
class GazePayload:
    gaze_yaw: float
    gaze_pitch: float
    head_yaw: float
    head_pitch: float
    head_roll: float
    screen_point: Optional[Tuple[float, float]] = None
    on_screen: bool = True
    deviation_deg: float = 0.0
    head_pose_excess_deg: float = 0.0


@dataclass(frozen=True)
class ShadowRegion:
    bounds: BoundingBox
    area_ratio: float
    intensity: float
    sharpness: float
    consistency: float


@dataclass(frozen=True)
class LightingPayload:
    luminance: float
    color_temperature: float
    shadow_consistency: float
    uniformity: float
    shadow_regions: Tuple[ShadowRegion, ...] = ()
    green_screen_coverage: float = 0.0
    green_screen_confidence: float = 0.0
    edge_artifact_score: float = 0.0
    replacement_type: Optional[str] = None
    baseline_deviation: Optional[float] = None
    light_source_count: int = 0
    natural_lighting_score: float = 0.0
    artificial_lighting_score: float = 0.0
    mixed_lighting: bool = False


@dataclass(frozen=True)
class ReflectedContent:
    content_type: str  # screen, person, text, object
    confidence: float
    risk: float


@dataclass(frozen=True)
class MirrorCandidate:
    bounds: BoundingBox
    reflectivity: float
    symmetry: float
    edge_sharpness: float
    confidence: float
    reflected_content: Tuple[ReflectedContent, ...] = ()

    @property
    def risk(self) -> float:
        return max((c.risk for c in self.reflected_content), default=0.0)


@dataclass(frozen=True)
class HiddenScreen:
    bounds: BoundingBox
    method: str  # glow or reflection
    confidence: float


@dataclass(frozen=True)
class ReflectionPayload:
    mirrors: Tuple[MirrorCandidate, ...] = ()
    hidden_screens: Tuple[HiddenScreen, ...] = ()


@dataclass(frozen=True)
class DetectedObject:
    label: str
    confidence: float
    bbox: Optional[BoundingBox] = None


@dataclass(frozen=True)
class ObjectPayload:
    objects: Tuple[DetectedObject, ...] = ()


# ------------------------------------------------------------------
# Signals
# ------------------------------------------------------------------

@dataclass(frozen=True)
class Signal:
    """
    Evidence produced by one detector plugin for one frame.

    A degraded signal (timeout, exception, busy plugin) carries
    absent=True, zero confidence and no payload.
    """
    kind: SignalKind
    confidence: float
    timestamp: float
    payload: Any = None
    source: str = ""
    absent: bool = False
    reason: Optional[str] = None

    def __post_init__(self):
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Signal confidence must be in [0, 1], got {self.confidence}")

    @classmethod
    def degraded(cls, kind: SignalKind, timestamp: float, source: str, reason: str) -> "Signal":
        return cls(kind=kind, confidence=0.0, timestamp=timestamp, source=source, absent=True, reason=reason)


@dataclass(frozen=True)
class AbruptChange:
    metric: str
    magnitude: float  # normalized so that 1.0 is a full-scale change
    raw_delta: float
    severity: ChangeSeverity


@dataclass(frozen=True)
class TemporalEnrichment:
    """Temporal context attached alongside a signal"""
    stability: float = 1.0
    changes: Tuple[AbruptChange, ...] = ()
    identity_similarity: Optional[float] = None
    identity_mismatch: bool = False
    angular_velocity: Optional[float] = None
    suspicious_motion: bool = False
    history_length: int = 0


@dataclass(frozen=True)
class EnrichedSignal:
    signal: Signal
    temporal: TemporalEnrichment

    @property
    def kind(self) -> SignalKind:
        return self.signal.kind


# ------------------------------------------------------------------
# Violations and results
# ------------------------------------------------------------------

@dataclass(frozen=True)
class Violation:
    type: str
    severity: Severity
    confidence: float
    description: str
    evidence_ref: str
    timestamp: float
    auto_block: bool
    tier: ViolationTier
    id: str = field(default_factory=lambda: f"VIO_{uuid.uuid4().hex[:8].upper()}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": str(getattr(self.type, "value", self.type)),
            "severity": self.severity.value,
            "confidence": round(self.confidence, 4),
            "description": self.description,
            "evidence_ref": self.evidence_ref,
            "timestamp": self.timestamp,
            "auto_block": self.auto_block,
            "tier": self.tier.value,
        }


@dataclass(frozen=True)
class RiskScore:
    score: int
    level: RiskLevel
    recommendation: str
    review_required: bool
    review_priority: str
    violation_count: int
    auto_block: bool
    breakdown: Dict[str, float] = field(default_factory=dict)
    violations_per_minute: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["level"] = self.level.value
        return data


@dataclass(frozen=True)
class ScanResult:
    scan_id: str
    start_time: float
    duration_ms: float
    state: ScanState
    frames_processed: int
    expected_frames: int
    signals_summary: Dict[str, Any]
    violations: Tuple[Violation, ...]
    quality_score: float
    confidence_score: float
    completeness_score: float
    risk_score: RiskScore
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scan_id": self.scan_id,
            "start_time": self.start_time,
            "duration_ms": round(self.duration_ms, 1),
            "state": self.state.value,
            "frames_processed": self.frames_processed,
            "expected_frames": self.expected_frames,
            "signals_summary": self.signals_summary,
            "violations": [v.to_dict() for v in self.violations],
            "quality_score": round(self.quality_score, 4),
            "confidence_score": round(self.confidence_score, 4),
            "completeness_score": round(self.completeness_score, 4),
            "risk_score": self.risk_score.to_dict(),
            "error": self.error,
        }


@dataclass(frozen=True)
class ScanCallbacks:
    """Optional observers; exceptions raised by them are logged, never propagated"""
    on_progress: Optional[Any] = None
    on_violation: Optional[Any] = None
    on_scan_complete: Optional[Any] = None
    on_error: Optional[Any] = None


def violation_type_name(violation_type: Any) -> str:
    return str(getattr(violation_type, "value", violation_type))
