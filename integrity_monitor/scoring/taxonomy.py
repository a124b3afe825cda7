"""
Violation Taxonomy - Default policy tables

Every table here is a default for MonitorSettings and can be
overridden through configuration. Severity bands are ordered lists of
(minimum magnitude, severity); the last band whose minimum is reached
wins.
"""

from typing import Dict, List, Tuple

from ..types import SignalKind, ViolationType as VT


SEVERITY_WEIGHTS: Dict[str, int] = {
    "low": 1,
    "medium": 2,
    "high": 3,
    "critical": 4,
}

# Which signal kinds can raise each built-in type
TYPE_SOURCES: Dict[str, Tuple[SignalKind, ...]] = {
    VT.FACE_ABSENT.value: (SignalKind.FACE,),
    VT.MULTIPLE_PERSONS.value: (SignalKind.FACE, SignalKind.OBJECT),
    VT.IDENTITY_MISMATCH.value: (SignalKind.FACE,),
    VT.GAZE_OFF_SCREEN.value: (SignalKind.GAZE,),
    VT.HEAD_POSE_OUT_OF_RANGE.value: (SignalKind.GAZE,),
    VT.LIGHTING_MANIPULATION.value: (SignalKind.LIGHTING,),
    VT.ENVIRONMENTAL_TAMPERING.value: (SignalKind.LIGHTING,),
    VT.HIDDEN_SCREENS.value: (SignalKind.REFLECTION,),
    VT.MIRROR_REFLECTION_RISK.value: (SignalKind.REFLECTION,),
    VT.UNAUTHORIZED_MATERIALS.value: (SignalKind.OBJECT,),
    VT.ELECTRONIC_DEVICES.value: (SignalKind.OBJECT,),
}

DEFAULT_MIN_CONFIDENCE: Dict[str, float] = {
    VT.FACE_ABSENT.value: 0.6,
    VT.MULTIPLE_PERSONS.value: 0.6,
    VT.IDENTITY_MISMATCH.value: 0.6,
    VT.GAZE_OFF_SCREEN.value: 0.5,
    VT.HEAD_POSE_OUT_OF_RANGE.value: 0.5,
    VT.LIGHTING_MANIPULATION.value: 0.5,
    VT.ENVIRONMENTAL_TAMPERING.value: 0.6,
    VT.HIDDEN_SCREENS.value: 0.6,
    VT.MIRROR_REFLECTION_RISK.value: 0.5,
    VT.UNAUTHORIZED_MATERIALS.value: 0.5,
    VT.ELECTRONIC_DEVICES.value: 0.5,
}

# Consecutive qualifying frames before an episode is reported
DEFAULT_MIN_EPISODE_FRAMES: Dict[str, int] = {
    VT.FACE_ABSENT.value: 2,
    VT.GAZE_OFF_SCREEN.value: 3,
    VT.HEAD_POSE_OUT_OF_RANGE.value: 3,
}

# Magnitude units per type:
#   identity-mismatch        identity threshold minus similarity
#   gaze-off-screen          degrees outside the screen
#   head-pose-out-of-range   degrees outside calibrated bounds
#   lighting-manipulation    normalized change (or 1 - shadow stability)
#   mirror-reflection-risk   highest reflected-content risk
#   multiple-persons         number of extra people
DEFAULT_SEVERITY_BANDS: Dict[str, List[Tuple[float, str]]] = {
    VT.FACE_ABSENT.value: [(0.0, "high")],
    VT.MULTIPLE_PERSONS.value: [(0.0, "critical")],
    VT.IDENTITY_MISMATCH.value: [(0.0, "low"), (0.05, "medium"), (0.15, "high"), (0.3, "critical")],
    VT.GAZE_OFF_SCREEN.value: [(0.0, "low"), (10.0, "medium"), (25.0, "high")],
    VT.HEAD_POSE_OUT_OF_RANGE.value: [(0.0, "low"), (10.0, "medium"), (20.0, "high")],
    VT.LIGHTING_MANIPULATION.value: [(0.0, "low"), (0.15, "medium"), (0.3, "high"), (0.5, "critical")],
    VT.ENVIRONMENTAL_TAMPERING.value: [(0.0, "critical")],
    VT.HIDDEN_SCREENS.value: [(0.0, "critical")],
    VT.MIRROR_REFLECTION_RISK.value: [(0.0, "medium"), (0.7, "high")],
    VT.UNAUTHORIZED_MATERIALS.value: [(0.0, "high")],
    VT.ELECTRONIC_DEVICES.value: [(0.0, "critical")],
}

OBJECT_VIOLATION_MAP: Dict[str, str] = {
    "cell phone": VT.ELECTRONIC_DEVICES.value,
    "phone": VT.ELECTRONIC_DEVICES.value,
    "tablet": VT.ELECTRONIC_DEVICES.value,
    "laptop": VT.ELECTRONIC_DEVICES.value,
    "monitor": VT.ELECTRONIC_DEVICES.value,
    "tv": VT.ELECTRONIC_DEVICES.value,
    "calculator": VT.ELECTRONIC_DEVICES.value,
    "book": VT.UNAUTHORIZED_MATERIALS.value,
    "paper": VT.UNAUTHORIZED_MATERIALS.value,
    "notebook": VT.UNAUTHORIZED_MATERIALS.value,
    "mirror": VT.MIRROR_REFLECTION_RISK.value,
    "person": VT.MULTIPLE_PERSONS.value,
}

# Per-label severity overrides the type's magnitude bands
OBJECT_SEVERITY: Dict[str, str] = {
    "person": "critical",
    "cell phone": "critical",
    "phone": "critical",
    "tablet": "critical",
    "laptop": "critical",
    "monitor": "critical",
    "tv": "critical",
    "book": "high",
    "paper": "high",
    "notebook": "high",
    "calculator": "medium",
    "mirror": "medium",
}

DEFAULT_STABILITY_GAIN: Dict[str, float] = {
    SignalKind.LIGHTING.value: 5.0,
    SignalKind.FACE.value: 50.0,
    SignalKind.GAZE.value: 0.01,
    SignalKind.REFLECTION.value: 0.5,
    SignalKind.OBJECT.value: 0.5,
}

DESCRIPTIONS: Dict[str, str] = {
    VT.FACE_ABSENT.value: "No face visible in frame",
    VT.MULTIPLE_PERSONS.value: "More than one person detected",
    VT.IDENTITY_MISMATCH.value: "Face does not match the enrolled candidate",
    VT.GAZE_OFF_SCREEN.value: "Gaze directed away from the screen",
    VT.HEAD_POSE_OUT_OF_RANGE.value: "Head turned beyond calibrated range",
    VT.LIGHTING_MANIPULATION.value: "Abrupt or unstable lighting change",
    VT.ENVIRONMENTAL_TAMPERING.value: "Virtual or chroma-key background detected",
    VT.HIDDEN_SCREENS.value: "Concealed screen detected",
    VT.MIRROR_REFLECTION_RISK.value: "Mirror reflecting risky content",
    VT.UNAUTHORIZED_MATERIALS.value: "Unauthorized study materials in view",
    VT.ELECTRONIC_DEVICES.value: "Electronic device in view",
}


def describe(violation_type: str) -> str:
    return DESCRIPTIONS.get(violation_type, violation_type.replace("-", " ").capitalize())
