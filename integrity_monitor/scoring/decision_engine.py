"""
Violation Decision Engine - Maps enriched signals to typed violations
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Set, Tuple

from ..types import (
    EnrichedSignal,
    FacePayload,
    GazePayload,
    LightingPayload,
    ObjectPayload,
    ReflectionPayload,
    Severity,
    SignalKind,
    Violation,
    ViolationTier,
    ViolationType as VT,
)
from .taxonomy import SEVERITY_WEIGHTS, TYPE_SOURCES, describe

if TYPE_CHECKING:
    from ..config import MonitorSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    """A condition that held for one frame, before episode debouncing"""
    type: str
    magnitude: float
    confidence: float
    evidence_ref: str
    severity: Optional[str] = None
    detail: str = ""

    def outranks(self, other: "Candidate") -> bool:
        mine = (SEVERITY_WEIGHTS.get(self.severity or "", 0), self.magnitude, self.confidence)
        theirs = (SEVERITY_WEIGHTS.get(other.severity or "", 0), other.magnitude, other.confidence)
        return mine > theirs


@dataclass
class EpisodeState:
    hits: int = 0
    misses: int = 0
    active: bool = False


class ViolationDecisionEngine:
    """
    Deterministic mapping from (Signal, TemporalEnrichment) to violations.

    A condition must hold for min_episode_frames consecutive evaluated
    frames before its type is reported, and is reported once per
    contiguous episode. An episode ends after episode_release_frames
    evaluated frames without the condition. Frames where no source of a
    type produced a trustworthy signal leave the episode untouched.
    """

    def __init__(self, settings: "MonitorSettings"):
        self.settings = settings
        self._episodes: Dict[str, EpisodeState] = {}

    def reset(self) -> None:
        self._episodes.clear()

    def active_episodes(self) -> List[str]:
        return sorted(t for t, state in self._episodes.items() if state.active)

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    def is_auto_block(self, confidence: float) -> bool:
        return confidence > self.settings.auto_block_threshold

    def tier_for(self, confidence: float) -> ViolationTier:
        if self.is_auto_block(confidence):
            return ViolationTier.BLOCK
        if confidence >= self.settings.review_threshold:
            return ViolationTier.REVIEW
        if confidence >= self.settings.warning_threshold:
            return ViolationTier.WARNING
        return ViolationTier.INFO

    def assign_severity(self, violation_type: str, magnitude: float) -> Severity:
        bands = self.settings.severity_bands.get(violation_type)
        if not bands:
            return Severity.MEDIUM
        severity = bands[0][1]
        for minimum, name in bands:
            if magnitude >= minimum:
                severity = name
        return Severity(severity)

    def build_violation(self, candidate: Candidate, timestamp: float) -> Violation:
        severity = Severity(candidate.severity) if candidate.severity else \
            self.assign_severity(candidate.type, candidate.magnitude)
        description = describe(candidate.type)
        if candidate.detail:
            description = f"{description} ({candidate.detail})"
        return Violation(
            type=candidate.type,
            severity=severity,
            confidence=candidate.confidence,
            description=description,
            evidence_ref=candidate.evidence_ref,
            timestamp=timestamp,
            auto_block=self.is_auto_block(candidate.confidence),
            tier=self.tier_for(candidate.confidence),
        )

    # ------------------------------------------------------------------
    # Per-signal evaluation
    # ------------------------------------------------------------------

    def evaluate(self, enriched: EnrichedSignal, frame_index: Optional[int] = None) -> Tuple[Set[str], List[Candidate]]:
        """
        Evaluate one enriched signal.

        Returns:
            (types that were evaluated, candidates whose condition held)
        """
        signal = enriched.signal
        if signal.absent or signal.payload is None or signal.confidence < self.settings.min_signal_confidence:
            return set(), []

        evaluated = {
            t for t, kinds in TYPE_SOURCES.items()
            if signal.kind in kinds and signal.confidence >= self.settings.min_confidence_for(t)
        }
        if signal.kind is SignalKind.OBJECT:
            # object labels may map to configured types outside the built-in table
            evaluated |= {
                t for t in self.settings.object_violation_map.values()
                if signal.confidence >= self.settings.min_confidence_for(t)
            }
        ref = f"frame:{frame_index if frame_index is not None else '-'}:{signal.source or signal.kind.value}"

        if signal.kind is SignalKind.FACE:
            candidates = self._face(enriched, ref)
        elif signal.kind is SignalKind.GAZE:
            candidates = self._gaze(enriched, ref)
        elif signal.kind is SignalKind.LIGHTING:
            candidates = self._lighting(enriched, ref)
        elif signal.kind is SignalKind.REFLECTION:
            candidates = self._reflection(enriched, ref)
        else:
            candidates = self._objects(enriched, ref)

        return evaluated, [c for c in candidates if c.type in evaluated]

    def _face(self, enriched: EnrichedSignal, ref: str) -> List[Candidate]:
        payload: FacePayload = enriched.signal.payload
        confidence = enriched.signal.confidence
        if payload.face_count == 0:
            return [Candidate(VT.FACE_ABSENT.value, 1.0, confidence, ref)]

        candidates = []
        if payload.face_count > 1:
            candidates.append(Candidate(VT.MULTIPLE_PERSONS.value, float(payload.face_count - 1), confidence, ref,
                                        detail=f"{payload.face_count} faces"))
        temporal = enriched.temporal
        if temporal.identity_mismatch and temporal.identity_similarity is not None:
            drop = self.settings.identity_threshold - temporal.identity_similarity
            candidates.append(Candidate(VT.IDENTITY_MISMATCH.value, drop, confidence, ref,
                                        detail=f"similarity {temporal.identity_similarity:.2f}"))
        return candidates

    def _gaze(self, enriched: EnrichedSignal, ref: str) -> List[Candidate]:
        if enriched.temporal.suspicious_motion:
            return []
        payload: GazePayload = enriched.signal.payload
        confidence = enriched.signal.confidence
        candidates = []
        if not payload.on_screen:
            candidates.append(Candidate(VT.GAZE_OFF_SCREEN.value, payload.deviation_deg, confidence, ref,
                                        detail=f"{payload.deviation_deg:.1f} deg off screen"))
        if payload.head_pose_excess_deg > 0:
            candidates.append(Candidate(VT.HEAD_POSE_OUT_OF_RANGE.value, payload.head_pose_excess_deg, confidence, ref,
                                        detail=f"yaw {payload.head_yaw:.0f} pitch {payload.head_pitch:.0f}"))
        return candidates

    def _lighting(self, enriched: EnrichedSignal, ref: str) -> List[Candidate]:
        payload: LightingPayload = enriched.signal.payload
        temporal = enriched.temporal
        confidence = enriched.signal.confidence
        candidates = []

        manipulation: Optional[Candidate] = None
        for change in temporal.changes:
            candidate = Candidate(VT.LIGHTING_MANIPULATION.value, change.magnitude, confidence, ref,
                                  detail=f"{change.metric} change {change.raw_delta:.2f}")
            if manipulation is None or candidate.outranks(manipulation):
                manipulation = candidate
        if temporal.stability < self.settings.shadow_manipulation_threshold:
            candidate = Candidate(VT.LIGHTING_MANIPULATION.value, 1.0 - temporal.stability, confidence, ref,
                                  detail=f"shadow stability {temporal.stability:.2f}")
            if manipulation is None or candidate.outranks(manipulation):
                manipulation = candidate
        deviation = payload.baseline_deviation
        if deviation is not None and deviation > self.settings.baseline_deviation_threshold:
            candidate = Candidate(VT.LIGHTING_MANIPULATION.value, deviation, confidence, ref,
                                  detail=f"luminance {deviation:.2f} off calibrated baseline")
            if manipulation is None or candidate.outranks(manipulation):
                manipulation = candidate
        if manipulation is not None:
            candidates.append(manipulation)

        keyed = payload.green_screen_confidence >= self.settings.green_screen_confidence_threshold
        # colour spill around a weaker keyed region still betrays compositing
        spill = (payload.replacement_type is not None
                 and payload.edge_artifact_score >= self.settings.edge_artifact_threshold)
        if keyed or spill:
            evidence = max(payload.green_screen_confidence, payload.edge_artifact_score)
            detail = f"chroma coverage {payload.green_screen_coverage:.0%}"
            if payload.replacement_type:
                detail += f", {payload.replacement_type}"
            if spill:
                detail += f", edge spill {payload.edge_artifact_score:.2f}"
            candidates.append(Candidate(VT.ENVIRONMENTAL_TAMPERING.value, payload.green_screen_coverage,
                                        min(confidence, evidence), ref, detail=detail))
        return candidates

    def _reflection(self, enriched: EnrichedSignal, ref: str) -> List[Candidate]:
        payload: ReflectionPayload = enriched.signal.payload
        confidence = enriched.signal.confidence
        candidates = []

        risky = [m for m in payload.mirrors if m.risk > self.settings.mirror_risk_threshold]
        if risky:
            mirror = max(risky, key=lambda m: (m.risk, m.confidence))
            kinds = ", ".join(sorted({c.content_type for c in mirror.reflected_content}))
            candidates.append(Candidate(VT.MIRROR_REFLECTION_RISK.value, mirror.risk,
                                        min(confidence, mirror.confidence), ref, detail=f"reflecting {kinds}"))

        screens = [s for s in payload.hidden_screens if s.confidence >= self.settings.hidden_screen_threshold]
        if screens:
            screen = max(screens, key=lambda s: s.confidence)
            candidates.append(Candidate(VT.HIDDEN_SCREENS.value, screen.confidence,
                                        min(confidence, screen.confidence), ref,
                                        detail=f"{len(screens)} via {screen.method}"))
        return candidates

    def _objects(self, enriched: EnrichedSignal, ref: str) -> List[Candidate]:
        payload: ObjectPayload = enriched.signal.payload
        confidence = enriched.signal.confidence
        by_type: Dict[str, Candidate] = {}

        detected = [o for o in payload.objects if o.confidence >= self.settings.object_detection_threshold]
        people = [o for o in detected if o.label.lower() == "person"]
        for obj in detected:
            label = obj.label.lower()
            violation_type = self.settings.object_violation_map.get(label)
            if violation_type is None:
                continue
            if label == "person":
                # the candidate is expected to be in view
                if len(people) < 2:
                    continue
                magnitude = float(len(people) - 1)
            else:
                magnitude = obj.confidence
            candidate = Candidate(violation_type, magnitude, min(confidence, obj.confidence), ref,
                                  severity=self.settings.object_severity.get(label), detail=label)
            current = by_type.get(violation_type)
            if current is None or candidate.outranks(current):
                by_type[violation_type] = candidate
        return list(by_type.values())

    # ------------------------------------------------------------------
    # Per-frame decision
    # ------------------------------------------------------------------

    def decide(self, signals: Iterable[EnrichedSignal], timestamp: float,
               frame_index: Optional[int] = None) -> List[Violation]:
        """
        Decide violations for one frame.

        Args:
            signals: All enriched signals produced for the frame
            timestamp: Frame timestamp
            frame_index: Position of the frame within the scan

        Returns:
            Violations starting a new episode on this frame
        """
        evaluated: Set[str] = set()
        candidates: Dict[str, Candidate] = {}
        for enriched in signals:
            types, found = self.evaluate(enriched, frame_index)
            evaluated |= types
            for candidate in found:
                current = candidates.get(candidate.type)
                if current is None or candidate.outranks(current):
                    candidates[candidate.type] = candidate

        violations = []
        for violation_type in sorted(evaluated):
            state = self._episodes.setdefault(violation_type, EpisodeState())
            candidate = candidates.get(violation_type)
            if candidate is None:
                if state.active:
                    state.misses += 1
                    if state.misses >= self.settings.episode_release_frames:
                        self._episodes[violation_type] = EpisodeState()
                else:
                    state.hits = 0
                continue

            state.misses = 0
            if state.active:
                continue
            state.hits += 1
            if state.hits >= self.settings.min_episode_frames_for(violation_type):
                state.active = True
                violations.append(self.build_violation(candidate, timestamp))

        for violation in violations:
            logger.info(f"Violation: {violation.type} severity={violation.severity.value} "
                        f"confidence={violation.confidence:.2f} auto_block={violation.auto_block}")
        return violations
