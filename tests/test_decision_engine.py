"""
Tests for the Violation Decision Engine
"""

import pytest


def _enriched(signal, **temporal):
    from integrity_monitor.types import EnrichedSignal, TemporalEnrichment

    return EnrichedSignal(signal, TemporalEnrichment(**temporal))


def _signal(kind, payload, confidence=0.9, timestamp=0.0, source=""):
    from integrity_monitor.types import Signal

    return Signal(kind=kind, confidence=confidence, timestamp=timestamp, payload=payload, source=source)


def _face(similarity=0.99, faces=1, confidence=0.9, mismatch=None):
    from integrity_monitor.types import FacePayload, SignalKind

    if mismatch is None:
        mismatch = similarity < 0.95
    signal = _signal(SignalKind.FACE, FacePayload(face_count=faces, identity_similarity=similarity), confidence)
    return _enriched(signal, identity_similarity=similarity, identity_mismatch=mismatch)


def _objects(*objects, confidence=0.9):
    from integrity_monitor.types import DetectedObject, ObjectPayload, SignalKind

    payload = ObjectPayload(objects=tuple(DetectedObject(label, conf) for label, conf in objects))
    return _enriched(_signal(SignalKind.OBJECT, payload, confidence, source="objects"))


class TestLightingDecisions:
    """End-to-end from raw lighting signals through temporal analysis"""

    def test_lighting_jump_produces_one_critical_violation(self):
        from integrity_monitor.config import build_settings
        from integrity_monitor.scoring import ViolationDecisionEngine
        from integrity_monitor.temporal import TemporalConsistencyAnalyzer
        from integrity_monitor.types import LightingPayload, Severity, Signal, SignalKind

        settings = build_settings()
        analyzer = TemporalConsistencyAnalyzer(settings)
        engine = ViolationDecisionEngine(settings)

        violations = []
        for i, luminance in enumerate([0.3, 0.8, 0.8, 0.8]):
            payload = LightingPayload(luminance=luminance, color_temperature=5000.0,
                                      shadow_consistency=0.8, uniformity=0.9)
            signal = Signal(kind=SignalKind.LIGHTING, confidence=0.9, timestamp=i * 0.05,
                            payload=payload, source="lighting")
            violations += engine.decide([analyzer.analyze(signal)], signal.timestamp, i)

        assert len(violations) == 1
        assert violations[0].type == "lighting-manipulation"
        assert violations[0].severity == Severity.CRITICAL
        assert violations[0].evidence_ref == "frame:1:lighting"

    def test_green_screen(self):
        from integrity_monitor.config import build_settings
        from integrity_monitor.scoring import ViolationDecisionEngine
        from integrity_monitor.types import LightingPayload, SignalKind

        engine = ViolationDecisionEngine(build_settings())
        payload = LightingPayload(luminance=0.5, color_temperature=5000.0, shadow_consistency=1.0,
                                  uniformity=0.9, green_screen_coverage=0.4, green_screen_confidence=0.85)
        violations = engine.decide([_enriched(_signal(SignalKind.LIGHTING, payload))], 0.0, 0)

        assert [v.type for v in violations] == ["environmental-tampering"]
        assert violations[0].confidence == pytest.approx(0.85)

    def test_room_dimmed_to_a_quarter(self):
        """A dark, smooth frame is still a trustworthy lighting reading"""
        import numpy as np

        from integrity_monitor.config import build_settings
        from integrity_monitor.detectors import LightingDetector
        from integrity_monitor.scoring import ViolationDecisionEngine
        from integrity_monitor.temporal import TemporalConsistencyAnalyzer
        from integrity_monitor.types import Frame, Severity

        settings = build_settings()
        detector = LightingDetector()
        analyzer = TemporalConsistencyAnalyzer(settings)
        engine = ViolationDecisionEngine(settings)

        row = np.linspace(100, 220, 160).astype(np.uint8)
        scene = np.dstack([np.tile(row, (120, 1))] * 3)

        violations = []
        for i, image in enumerate([scene, scene, scene // 4]):
            signal = detector.analyze(Frame.from_bgr(image, i * 0.05))
            violations += engine.decide([analyzer.analyze(signal)], signal.timestamp, i)

        assert signal.confidence == pytest.approx(1.0)
        assert [v.type for v in violations] == ["lighting-manipulation"]
        assert violations[0].severity == Severity.HIGH
        assert violations[0].timestamp == pytest.approx(0.1)

    def test_departure_from_calibrated_baseline(self):
        from integrity_monitor.config import build_settings
        from integrity_monitor.scoring import ViolationDecisionEngine
        from integrity_monitor.types import LightingPayload, Severity, SignalKind

        def payload(deviation):
            return LightingPayload(luminance=0.2, color_temperature=5000.0, shadow_consistency=1.0,
                                   uniformity=0.9, baseline_deviation=deviation)

        engine = ViolationDecisionEngine(build_settings())
        assert engine.decide([_enriched(_signal(SignalKind.LIGHTING, payload(0.1)))], 0.0, 0) == []

        violations = engine.decide([_enriched(_signal(SignalKind.LIGHTING, payload(0.35)))], 0.05, 1)

        assert [v.type for v in violations] == ["lighting-manipulation"]
        assert violations[0].severity == Severity.HIGH
        assert "baseline" in violations[0].description

    def test_edge_spill_around_weak_key(self):
        """Colour spill flags a replaced background the chroma score alone misses"""
        from integrity_monitor.config import build_settings
        from integrity_monitor.scoring import ViolationDecisionEngine
        from integrity_monitor.types import LightingPayload, SignalKind

        def payload(replacement):
            return LightingPayload(luminance=0.5, color_temperature=5000.0, shadow_consistency=1.0,
                                   uniformity=0.9, green_screen_coverage=0.3, green_screen_confidence=0.5,
                                   edge_artifact_score=0.3, replacement_type=replacement)

        quiet = ViolationDecisionEngine(build_settings())
        assert quiet.decide([_enriched(_signal(SignalKind.LIGHTING, payload(None)))], 0.0, 0) == []

        engine = ViolationDecisionEngine(build_settings())
        violations = engine.decide([_enriched(_signal(SignalKind.LIGHTING, payload("video")))], 0.0, 0)

        assert [v.type for v in violations] == ["environmental-tampering"]
        assert violations[0].confidence == pytest.approx(0.5)
        assert "video" in violations[0].description
        assert "edge spill" in violations[0].description


class TestEpisodes:
    """Tests for debouncing and episode boundaries"""

    def test_identity_episode_reported_once(self):
        """Three consecutive frames below threshold raise exactly one violation"""
        from integrity_monitor.config import build_settings
        from integrity_monitor.scoring import ViolationDecisionEngine

        engine = ViolationDecisionEngine(build_settings())
        violations = []
        for i in range(3):
            violations += engine.decide([_face(similarity=0.8)], i * 0.05, i)

        assert len(violations) == 1
        assert violations[0].type == "identity-mismatch"
        assert engine.active_episodes() == ["identity-mismatch"]

    def test_new_episode_after_release(self):
        from integrity_monitor.config import build_settings
        from integrity_monitor.scoring import ViolationDecisionEngine

        engine = ViolationDecisionEngine(build_settings())
        sequence = [0.5, 0.5, 0.99, 0.5]
        counts = [len(engine.decide([_face(similarity=s)], i * 0.05, i)) for i, s in enumerate(sequence)]

        assert counts == [1, 0, 0, 1]

    def test_min_episode_frames_debounces(self):
        """face-absent needs two consecutive frames by default"""
        from integrity_monitor.config import build_settings
        from integrity_monitor.scoring import ViolationDecisionEngine

        engine = ViolationDecisionEngine(build_settings())
        counts = [len(engine.decide([_face(faces=n)], i * 0.05, i)) for i, n in enumerate([0, 1, 0, 0])]

        assert counts == [0, 0, 0, 1]

    def test_unevaluated_frames_do_not_end_episode(self):
        from integrity_monitor.config import build_settings
        from integrity_monitor.scoring import ViolationDecisionEngine
        from integrity_monitor.types import Signal, SignalKind

        engine = ViolationDecisionEngine(build_settings())
        degraded = _enriched(Signal.degraded(SignalKind.FACE, 0.05, "face", "timeout"))

        first = engine.decide([_face(similarity=0.5)], 0.0, 0)
        gap = engine.decide([degraded], 0.05, 1)
        again = engine.decide([_face(similarity=0.5)], 0.1, 2)

        assert len(first) == 1
        assert gap == []
        assert again == []

    def test_low_confidence_signal_ignored(self):
        from integrity_monitor.config import build_settings
        from integrity_monitor.scoring import ViolationDecisionEngine

        engine = ViolationDecisionEngine(build_settings())
        assert engine.decide([_face(similarity=0.5, confidence=0.2)], 0.0, 0) == []

    def test_reset_clears_episodes(self):
        from integrity_monitor.config import build_settings
        from integrity_monitor.scoring import ViolationDecisionEngine

        engine = ViolationDecisionEngine(build_settings())
        engine.decide([_face(similarity=0.5)], 0.0, 0)
        engine.reset()

        assert engine.active_episodes() == []
        assert len(engine.decide([_face(similarity=0.5)], 0.05, 1)) == 1


class TestSeverityAndTiers:

    @pytest.mark.parametrize("similarity,expected", [
        (0.93, "low"),
        (0.85, "medium"),
        (0.75, "high"),
        (0.5, "critical"),
    ])
    def test_identity_severity_bands(self, similarity, expected):
        from integrity_monitor.config import build_settings
        from integrity_monitor.scoring import ViolationDecisionEngine

        engine = ViolationDecisionEngine(build_settings())
        violations = engine.decide([_face(similarity=similarity)], 0.0, 0)

        assert violations[0].severity.value == expected

    @pytest.mark.parametrize("threshold,expected", [
        (0.0, True),
        (0.79, True),
        (0.8, True),
        (0.81, True),
        (1.0, False),
    ])
    def test_auto_block_threshold_sweep(self, threshold, expected):
        """autoBlock holds exactly when confidence exceeds the threshold"""
        from integrity_monitor.config import build_settings
        from integrity_monitor.scoring import ViolationDecisionEngine

        engine = ViolationDecisionEngine(build_settings(
            auto_block_threshold=threshold,
            review_threshold=min(0.6, threshold),
            warning_threshold=min(0.4, threshold),
        ))
        violation = engine.decide([_face(similarity=0.5, confidence=0.9)], 0.0, 0)[0]

        assert violation.auto_block is expected

    def test_auto_block_is_independent_of_severity(self):
        from integrity_monitor.config import build_settings
        from integrity_monitor.scoring import ViolationDecisionEngine
        from integrity_monitor.types import Severity, ViolationTier

        engine = ViolationDecisionEngine(build_settings())
        violation = engine.decide([_face(similarity=0.93, confidence=0.95)], 0.0, 0)[0]

        assert violation.severity == Severity.LOW
        assert violation.auto_block is True
        assert violation.tier == ViolationTier.BLOCK

    @pytest.mark.parametrize("confidence,tier", [
        (0.9, "block"),
        (0.7, "review"),
        (0.45, "warning"),
        (0.35, "info"),
    ])
    def test_tiers(self, confidence, tier):
        from integrity_monitor.config import build_settings
        from integrity_monitor.scoring import ViolationDecisionEngine

        engine = ViolationDecisionEngine(build_settings())
        assert engine.tier_for(confidence).value == tier


class TestObjectDecisions:

    def test_phone_is_electronic_device(self):
        from integrity_monitor.config import build_settings
        from integrity_monitor.scoring import ViolationDecisionEngine
        from integrity_monitor.types import Severity

        engine = ViolationDecisionEngine(build_settings())
        violations = engine.decide([_objects(("cell phone", 0.85))], 0.0, 3)

        assert len(violations) == 1
        violation = violations[0]
        assert violation.type == "electronic-devices"
        assert violation.severity == Severity.CRITICAL
        assert violation.confidence == pytest.approx(0.85)
        assert violation.evidence_ref == "frame:3:objects"

    def test_below_detection_threshold_ignored(self):
        from integrity_monitor.config import build_settings
        from integrity_monitor.scoring import ViolationDecisionEngine

        engine = ViolationDecisionEngine(build_settings())
        assert engine.decide([_objects(("cell phone", 0.5))], 0.0, 0) == []

    def test_single_person_is_the_candidate(self):
        from integrity_monitor.config import build_settings
        from integrity_monitor.scoring import ViolationDecisionEngine

        engine = ViolationDecisionEngine(build_settings())
        assert engine.decide([_objects(("person", 0.95))], 0.0, 0) == []

        violations = engine.decide([_objects(("person", 0.95), ("person", 0.9))], 0.05, 1)
        assert [v.type for v in violations] == ["multiple-persons"]

    def test_books_are_unauthorized_materials(self):
        from integrity_monitor.config import build_settings
        from integrity_monitor.scoring import ViolationDecisionEngine

        engine = ViolationDecisionEngine(build_settings())
        violations = engine.decide([_objects(("book", 0.9), ("laptop", 0.8))], 0.0, 0)

        assert sorted(v.type for v in violations) == ["electronic-devices", "unauthorized-materials"]

    def test_configured_label_mapping(self):
        from integrity_monitor.config import build_settings
        from integrity_monitor.scoring import ViolationDecisionEngine
        from integrity_monitor.scoring.taxonomy import OBJECT_VIOLATION_MAP

        mapping = dict(OBJECT_VIOLATION_MAP, headphones="electronic-devices")
        engine = ViolationDecisionEngine(build_settings(object_violation_map=mapping))
        violations = engine.decide([_objects(("headphones", 0.9))], 0.0, 0)

        assert [v.type for v in violations] == ["electronic-devices"]


class TestGazeDecisions:

    def test_impossible_motion_suppresses_gaze_violation(self):
        from integrity_monitor.config import build_settings
        from integrity_monitor.scoring import ViolationDecisionEngine
        from integrity_monitor.types import GazePayload, SignalKind

        payload = GazePayload(gaze_yaw=60.0, gaze_pitch=0.0, head_yaw=0.0, head_pitch=0.0, head_roll=0.0,
                              on_screen=False, deviation_deg=40.0)
        engine = ViolationDecisionEngine(build_settings(min_episode_frames={"gaze-off-screen": 1}))

        suspicious = _enriched(_signal(SignalKind.GAZE, payload), suspicious_motion=True)
        assert engine.decide([suspicious], 0.0, 0) == []

        steady = _enriched(_signal(SignalKind.GAZE, payload))
        violations = engine.decide([steady], 0.05, 1)
        assert [v.type for v in violations] == ["gaze-off-screen"]
        assert violations[0].severity.value == "high"


class TestReflectionDecisions:

    def test_hidden_screen_and_mirror(self):
        from integrity_monitor.config import build_settings
        from integrity_monitor.scoring import ViolationDecisionEngine
        from integrity_monitor.types import (
            HiddenScreen,
            MirrorCandidate,
            ReflectedContent,
            ReflectionPayload,
            SignalKind,
        )

        mirror = MirrorCandidate(
            bounds=(0, 0, 100, 80), reflectivity=0.8, symmetry=0.7, edge_sharpness=0.5, confidence=0.75,
            reflected_content=(ReflectedContent("screen", 0.8, 0.9),),
        )
        payload = ReflectionPayload(
            mirrors=(mirror,),
            hidden_screens=(HiddenScreen((0, 0, 100, 80), "glow", 0.7),),
        )
        engine = ViolationDecisionEngine(build_settings())
        violations = engine.decide([_enriched(_signal(SignalKind.REFLECTION, payload))], 0.0, 0)

        by_type = {v.type: v for v in violations}
        assert set(by_type) == {"hidden-screens", "mirror-reflection-risk"}
        assert by_type["mirror-reflection-risk"].severity.value == "high"
        assert by_type["mirror-reflection-risk"].confidence == pytest.approx(0.75)
