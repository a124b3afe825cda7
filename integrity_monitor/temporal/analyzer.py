"""
Temporal Consistency Analyzer - Detects manipulation invisible in a single frame

Keeps one TemporalHistory per signal kind and attaches stability,
abrupt-change, identity-drift and impossible-motion findings to each
incoming signal.
"""

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, List, Optional

import numpy as np

from ..calibration import IdentityProfile, landmark_similarity
from ..types import (
    AbruptChange,
    ChangeSeverity,
    EnrichedSignal,
    FacePayload,
    GazePayload,
    LightingPayload,
    ObjectPayload,
    ReflectionPayload,
    Signal,
    SignalKind,
    TemporalEnrichment,
)
from .history import TemporalHistory

if TYPE_CHECKING:
    from ..config import MonitorSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Sample:
    timestamp: float
    values: Dict[str, Optional[float]]

    def get(self, name: str) -> Optional[float]:
        return self.values.get(name)


def classify_change(magnitude: float) -> ChangeSeverity:
    """Classify a normalized change magnitude"""
    if magnitude >= 0.5:
        return ChangeSeverity.CRITICAL
    if magnitude >= 0.3:
        return ChangeSeverity.MAJOR
    if magnitude >= 0.15:
        return ChangeSeverity.MODERATE
    return ChangeSeverity.MINOR


def variance_stability(variance: float, gain: float) -> float:
    return max(0.0, 1.0 - variance * gain)


class TemporalConsistencyAnalyzer:
    """
    Per-session temporal analysis.

    Only present (non-degraded) signals are recorded; a degraded signal
    passes through with neutral enrichment and leaves history untouched.
    """

    def __init__(self, settings: "MonitorSettings", enrolled_identity: Optional[IdentityProfile] = None):
        self.settings = settings
        self._histories: Dict[SignalKind, TemporalHistory[Sample]] = {
            kind: TemporalHistory(settings.temporal_window_frames) for kind in SignalKind
        }
        self._enrolled = enrolled_identity
        self._template: Optional[np.ndarray] = enrolled_identity.as_array() if enrolled_identity else None

    def history(self, kind: SignalKind) -> TemporalHistory[Sample]:
        return self._histories[kind]

    @property
    def identity_template(self) -> Optional[np.ndarray]:
        return None if self._template is None else self._template.copy()

    def reset(self) -> None:
        """Clear all histories and restore the enrolled identity template"""
        for history in self._histories.values():
            history.clear()
        self._template = self._enrolled.as_array() if self._enrolled else None

    def re_enroll(self, identity: IdentityProfile) -> None:
        """Replace the enrolled identity (e.g. after a proctor-approved re-verification)"""
        self._enrolled = identity
        self._template = identity.as_array()
        self._histories[SignalKind.FACE].clear()
        logger.info(f"Identity re-enrolled: {identity.identity_id}")

    def analyze(self, signal: Signal) -> EnrichedSignal:
        history = self._histories[signal.kind]
        if signal.absent or signal.payload is None:
            return EnrichedSignal(signal, TemporalEnrichment(history_length=len(history)))

        if signal.kind is SignalKind.LIGHTING:
            enrichment = self._analyze_lighting(signal, history)
        elif signal.kind is SignalKind.FACE:
            enrichment = self._analyze_face(signal, history)
        elif signal.kind is SignalKind.GAZE:
            enrichment = self._analyze_gaze(signal, history)
        else:
            enrichment = self._analyze_counts(signal, history)
        return EnrichedSignal(signal, enrichment)

    # ------------------------------------------------------------------
    # Per-kind analysis
    # ------------------------------------------------------------------

    def _stability(self, history: TemporalHistory[Sample], metric: str, kind: SignalKind) -> float:
        variance = history.variance(lambda s: s.get(metric), self.settings.stability_window)
        return variance_stability(variance, self.settings.stability_gain_for(kind.value))

    def _analyze_lighting(self, signal: Signal, history: TemporalHistory[Sample]) -> TemporalEnrichment:
        payload: LightingPayload = signal.payload
        previous = history.latest()
        history.append(Sample(signal.timestamp, {
            "luminance": payload.luminance,
            "color_temperature": payload.color_temperature or None,
            "shadow_consistency": payload.shadow_consistency,
        }))

        changes: List[AbruptChange] = []
        if previous is not None:
            delta = abs(payload.luminance - previous.get("luminance"))
            if delta > self.settings.lighting_change_threshold:
                changes.append(AbruptChange("luminance", delta, delta, classify_change(delta)))

            prev_cct = previous.get("color_temperature")
            if prev_cct and payload.color_temperature:
                cct_delta = abs(payload.color_temperature - prev_cct)
                if cct_delta > self.settings.color_temperature_change_threshold:
                    magnitude = cct_delta / 1000.0
                    changes.append(AbruptChange("color_temperature", magnitude, cct_delta, classify_change(magnitude)))

        return TemporalEnrichment(
            stability=self._stability(history, "shadow_consistency", SignalKind.LIGHTING),
            changes=tuple(changes),
            history_length=len(history),
        )

    def _analyze_face(self, signal: Signal, history: TemporalHistory[Sample]) -> TemporalEnrichment:
        payload: FacePayload = signal.payload
        similarity = payload.identity_similarity
        if similarity is None and payload.landmarks is not None and self._template is not None:
            similarity = landmark_similarity(payload.landmarks, self._template)

        mismatch = similarity is not None and payload.face_count >= 1 and similarity < self.settings.identity_threshold

        rate = self.settings.identity_adaptation_rate
        if (rate > 0 and not mismatch and similarity is not None and payload.face_count == 1
                and payload.landmarks is not None and self._template is not None):
            self._template = (1.0 - rate) * self._template + rate * np.asarray(payload.landmarks, dtype=np.float64)

        history.append(Sample(signal.timestamp, {
            "similarity": similarity,
            "face_count": float(payload.face_count),
        }))

        return TemporalEnrichment(
            stability=self._stability(history, "similarity", SignalKind.FACE),
            identity_similarity=similarity,
            identity_mismatch=mismatch,
            history_length=len(history),
        )

    def _analyze_gaze(self, signal: Signal, history: TemporalHistory[Sample]) -> TemporalEnrichment:
        payload: GazePayload = signal.payload
        previous = history.latest()
        history.append(Sample(signal.timestamp, {
            "gaze_yaw": payload.gaze_yaw,
            "gaze_pitch": payload.gaze_pitch,
            "head_yaw": payload.head_yaw,
            "head_pitch": payload.head_pitch,
        }))

        velocity = None
        suspicious = False
        if previous is not None:
            dt = signal.timestamp - previous.timestamp
            if dt <= 0:
                dt = self.settings.frame_interval_s
            gaze_step = math.hypot(payload.gaze_yaw - previous.get("gaze_yaw"),
                                   payload.gaze_pitch - previous.get("gaze_pitch"))
            head_step = math.hypot(payload.head_yaw - previous.get("head_yaw"),
                                   payload.head_pitch - previous.get("head_pitch"))
            velocity = max(gaze_step, head_step) / dt
            suspicious = velocity > self.settings.max_gaze_velocity_deg_per_s
            if suspicious:
                logger.debug(f"Impossible gaze motion: {velocity:.0f} deg/s")

        return TemporalEnrichment(
            stability=self._stability(history, "gaze_yaw", SignalKind.GAZE),
            angular_velocity=velocity,
            suspicious_motion=suspicious,
            history_length=len(history),
        )

    def _analyze_counts(self, signal: Signal, history: TemporalHistory[Sample]) -> TemporalEnrichment:
        if isinstance(signal.payload, ReflectionPayload):
            count = len(signal.payload.mirrors) + len(signal.payload.hidden_screens)
        elif isinstance(signal.payload, ObjectPayload):
            count = len(signal.payload.objects)
        else:
            count = 0
        history.append(Sample(signal.timestamp, {"count": float(count)}))
        return TemporalEnrichment(
            stability=self._stability(history, "count", signal.kind),
            history_length=len(history),
        )
