"""
Tests for Temporal Consistency Analysis
"""

import numpy as np
import pytest


def _lighting(luminance, timestamp, shadow=0.8, cct=5000.0, confidence=0.9):
    from integrity_monitor.types import LightingPayload, Signal, SignalKind

    payload = LightingPayload(
        luminance=luminance,
        color_temperature=cct,
        shadow_consistency=shadow,
        uniformity=0.9,
    )
    return Signal(kind=SignalKind.LIGHTING, confidence=confidence, timestamp=timestamp, payload=payload)


def _gaze(yaw, timestamp, pitch=0.0):
    from integrity_monitor.types import GazePayload, Signal, SignalKind

    payload = GazePayload(gaze_yaw=yaw, gaze_pitch=pitch, head_yaw=0.0, head_pitch=0.0, head_roll=0.0)
    return Signal(kind=SignalKind.GAZE, confidence=0.9, timestamp=timestamp, payload=payload)


def _face(timestamp, similarity=None, landmarks=None, faces=1):
    from integrity_monitor.types import FacePayload, Signal, SignalKind

    payload = FacePayload(face_count=faces, landmarks=landmarks, identity_similarity=similarity)
    return Signal(kind=SignalKind.FACE, confidence=0.9, timestamp=timestamp, payload=payload)


class TestTemporalHistory:
    """Tests for the ring buffer"""

    def test_capacity_evicts_oldest(self):
        """Appending beyond capacity drops the oldest sample"""
        from integrity_monitor.temporal import TemporalHistory

        history = TemporalHistory(3)
        for value in range(1, 6):
            history.append(value)

        assert len(history) == 3
        assert list(history) == [3, 4, 5]
        assert history.is_full()
        assert history.latest() == 5
        assert history.previous() == 4

    def test_variance_skips_missing_values(self):
        from integrity_monitor.temporal import TemporalHistory

        history = TemporalHistory(10)
        for value in (1.0, None, 3.0):
            history.append({"v": value})

        assert history.values(lambda s: s["v"]).tolist() == [1.0, 3.0]
        assert history.variance(lambda s: s["v"]) == pytest.approx(1.0)

    def test_invalid_capacity(self):
        from integrity_monitor.temporal import TemporalHistory

        with pytest.raises(ValueError):
            TemporalHistory(0)


class TestClassifyChange:

    @pytest.mark.parametrize("magnitude,expected", [
        (0.05, "minor"),
        (0.2, "moderate"),
        (0.35, "major"),
        (0.5, "critical"),
    ])
    def test_bands(self, magnitude, expected):
        from integrity_monitor.temporal import classify_change

        assert classify_change(magnitude).value == expected


class TestLightingAnalysis:
    """Tests for abrupt lighting changes and shadow stability"""

    def test_luminance_jump_is_critical_change(self):
        """A 0.3 -> 0.8 luminance jump is reported as a critical change"""
        from integrity_monitor.config import build_settings
        from integrity_monitor.temporal import TemporalConsistencyAnalyzer
        from integrity_monitor.types import ChangeSeverity

        analyzer = TemporalConsistencyAnalyzer(build_settings())
        first = analyzer.analyze(_lighting(0.3, 0.0))
        second = analyzer.analyze(_lighting(0.8, 0.05))

        assert first.temporal.changes == ()
        assert len(second.temporal.changes) == 1
        change = second.temporal.changes[0]
        assert change.metric == "luminance"
        assert change.magnitude == pytest.approx(0.5)
        assert change.severity == ChangeSeverity.CRITICAL
        assert second.temporal.stability == pytest.approx(1.0)

    def test_small_drift_is_ignored(self):
        from integrity_monitor.config import build_settings
        from integrity_monitor.temporal import TemporalConsistencyAnalyzer

        analyzer = TemporalConsistencyAnalyzer(build_settings())
        analyzer.analyze(_lighting(0.50, 0.0))
        enriched = analyzer.analyze(_lighting(0.55, 0.05))

        assert enriched.temporal.changes == ()

    def test_color_temperature_jump(self):
        from integrity_monitor.config import build_settings
        from integrity_monitor.temporal import TemporalConsistencyAnalyzer

        analyzer = TemporalConsistencyAnalyzer(build_settings())
        analyzer.analyze(_lighting(0.5, 0.0, cct=3000.0))
        enriched = analyzer.analyze(_lighting(0.5, 0.05, cct=6500.0))

        metrics = [c.metric for c in enriched.temporal.changes]
        assert metrics == ["color_temperature"]
        assert enriched.temporal.changes[0].raw_delta == pytest.approx(3500.0)

    def test_flickering_shadows_lower_stability(self):
        from integrity_monitor.config import build_settings
        from integrity_monitor.temporal import TemporalConsistencyAnalyzer

        analyzer = TemporalConsistencyAnalyzer(build_settings())
        enriched = None
        for i, shadow in enumerate([0.1, 0.9] * 4):
            enriched = analyzer.analyze(_lighting(0.5, i * 0.05, shadow=shadow))

        assert enriched.temporal.stability < 0.3

    def test_degraded_signal_leaves_history_untouched(self):
        from integrity_monitor.config import build_settings
        from integrity_monitor.temporal import TemporalConsistencyAnalyzer
        from integrity_monitor.types import Signal, SignalKind

        analyzer = TemporalConsistencyAnalyzer(build_settings())
        analyzer.analyze(_lighting(0.3, 0.0))
        enriched = analyzer.analyze(Signal.degraded(SignalKind.LIGHTING, 0.05, "lighting", "timeout"))

        assert enriched.temporal.changes == ()
        assert enriched.temporal.stability == 1.0
        assert len(analyzer.history(SignalKind.LIGHTING)) == 1

    def test_history_bounded_by_window(self):
        from integrity_monitor.config import build_settings
        from integrity_monitor.temporal import TemporalConsistencyAnalyzer
        from integrity_monitor.types import SignalKind

        analyzer = TemporalConsistencyAnalyzer(build_settings(temporal_window_frames=5, stability_window=3))
        for i in range(12):
            analyzer.analyze(_lighting(0.5, i * 0.05))

        assert len(analyzer.history(SignalKind.LIGHTING)) == 5


class TestIdentityAnalysis:
    """Tests for identity drift against the enrolled profile"""

    def test_matching_landmarks(self, enrolled_identity, landmark_factory):
        """Translated and scaled copies of the enrolled face still match"""
        from integrity_monitor.config import build_settings
        from integrity_monitor.temporal import TemporalConsistencyAnalyzer

        analyzer = TemporalConsistencyAnalyzer(build_settings(), enrolled_identity)
        enriched = analyzer.analyze(_face(0.0, landmarks=landmark_factory(offset=(40, 25), scale=1.5)))

        assert enriched.temporal.identity_similarity == pytest.approx(1.0)
        assert enriched.temporal.identity_mismatch is False

    def test_distorted_landmarks_mismatch(self, enrolled_identity, landmark_factory):
        from integrity_monitor.config import build_settings
        from integrity_monitor.temporal import TemporalConsistencyAnalyzer

        other = landmark_factory()
        other[0:17] += np.array([0.0, 25.0])
        analyzer = TemporalConsistencyAnalyzer(build_settings(), enrolled_identity)
        enriched = analyzer.analyze(_face(0.0, landmarks=other))

        assert enriched.temporal.identity_similarity < 0.95
        assert enriched.temporal.identity_mismatch is True

    def test_reported_similarity_takes_precedence(self):
        from integrity_monitor.config import build_settings
        from integrity_monitor.temporal import TemporalConsistencyAnalyzer

        analyzer = TemporalConsistencyAnalyzer(build_settings())
        enriched = analyzer.analyze(_face(0.0, similarity=0.5))

        assert enriched.temporal.identity_similarity == 0.5
        assert enriched.temporal.identity_mismatch is True

    def test_no_face_is_not_a_mismatch(self):
        from integrity_monitor.config import build_settings
        from integrity_monitor.temporal import TemporalConsistencyAnalyzer

        analyzer = TemporalConsistencyAnalyzer(build_settings())
        enriched = analyzer.analyze(_face(0.0, similarity=0.2, faces=0))

        assert enriched.temporal.identity_mismatch is False

    def test_adaptation_disabled_by_default(self, enrolled_identity, landmark_factory):
        from integrity_monitor.config import build_settings
        from integrity_monitor.temporal import TemporalConsistencyAnalyzer

        analyzer = TemporalConsistencyAnalyzer(build_settings(), enrolled_identity)
        analyzer.analyze(_face(0.0, landmarks=landmark_factory(offset=(5, 5))))

        np.testing.assert_allclose(analyzer.identity_template, enrolled_identity.as_array())

    def test_adaptation_follows_verified_frames(self, enrolled_identity, landmark_factory):
        from integrity_monitor.config import build_settings
        from integrity_monitor.temporal import TemporalConsistencyAnalyzer

        analyzer = TemporalConsistencyAnalyzer(build_settings(identity_adaptation_rate=0.5), enrolled_identity)
        analyzer.analyze(_face(0.0, landmarks=landmark_factory(offset=(10, 0))))

        expected = enrolled_identity.as_array() + np.array([5.0, 0.0])
        np.testing.assert_allclose(analyzer.identity_template, expected)

        analyzer.reset()
        np.testing.assert_allclose(analyzer.identity_template, enrolled_identity.as_array())

    def test_re_enroll_replaces_template(self, enrolled_identity, landmark_factory):
        from integrity_monitor.calibration import IdentityProfile
        from integrity_monitor.config import build_settings
        from integrity_monitor.temporal import TemporalConsistencyAnalyzer

        other = landmark_factory()
        other[0:17] += np.array([0.0, 25.0])

        analyzer = TemporalConsistencyAnalyzer(build_settings(), enrolled_identity)
        assert analyzer.analyze(_face(0.0, landmarks=other)).temporal.identity_mismatch

        analyzer.re_enroll(IdentityProfile.from_array("candidate-1b", other))
        assert not analyzer.analyze(_face(0.05, landmarks=other)).temporal.identity_mismatch


class TestGazeAnalysis:
    """Tests for physically impossible gaze motion"""

    def test_impossible_motion_flagged(self):
        from integrity_monitor.config import build_settings
        from integrity_monitor.temporal import TemporalConsistencyAnalyzer

        analyzer = TemporalConsistencyAnalyzer(build_settings())
        analyzer.analyze(_gaze(0.0, 0.0))
        enriched = analyzer.analyze(_gaze(60.0, 1 / 30))

        assert enriched.temporal.angular_velocity == pytest.approx(1800.0)
        assert enriched.temporal.suspicious_motion is True

    def test_natural_motion_not_flagged(self):
        from integrity_monitor.config import build_settings
        from integrity_monitor.temporal import TemporalConsistencyAnalyzer

        analyzer = TemporalConsistencyAnalyzer(build_settings())
        analyzer.analyze(_gaze(0.0, 0.0))
        enriched = analyzer.analyze(_gaze(2.0, 1 / 30))

        assert enriched.temporal.suspicious_motion is False

    def test_first_sample_has_no_velocity(self):
        from integrity_monitor.config import build_settings
        from integrity_monitor.temporal import TemporalConsistencyAnalyzer

        analyzer = TemporalConsistencyAnalyzer(build_settings())
        enriched = analyzer.analyze(_gaze(10.0, 0.0))

        assert enriched.temporal.angular_velocity is None
        assert enriched.temporal.suspicious_motion is False
