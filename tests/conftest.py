"""
Pytest Configuration for Integrity Monitor Tests
"""
import threading
from typing import Optional

import numpy as np
import pytest

from integrity_monitor.calibration import CalibrationProfile, IdentityProfile
from integrity_monitor.detectors.base import DetectorPlugin
from integrity_monitor.types import (
    DetectedObject,
    FacePayload,
    Frame,
    ObjectPayload,
    Signal,
    SignalKind,
)


def make_frame(index: int, frame_rate: float = 20.0, value: int = 128, size=(120, 160)) -> Frame:
    """Flat grey RGBA frame stamped at index / frame_rate"""
    height, width = size
    pixels = np.full((height, width, 4), value, dtype=np.uint8)
    pixels[..., 3] = 255
    return Frame.from_rgba(pixels, index / frame_rate)


def make_landmarks(offset=(0.0, 0.0), scale: float = 1.0) -> np.ndarray:
    """Deterministic 68-point layout with distinct eye corners"""
    points = np.array([[(i % 10) * 12.0, (i // 10) * 9.0 + (i % 3)] for i in range(68)])
    points[36] = [20.0, 30.0]
    points[45] = [80.0, 30.0]
    return points * scale + np.asarray(offset)


def _at(frame: Frame, timestamp: Optional[float]) -> bool:
    return timestamp is not None and abs(frame.timestamp - timestamp) < 1e-6


class ScriptedFacePlugin(DetectorPlugin):
    """One verified face; a different person at trigger_at"""

    kind = SignalKind.FACE

    def __init__(self, trigger_at: Optional[float] = None, name: Optional[str] = None):
        super().__init__(name)
        self.trigger_at = trigger_at
        self.calls = 0

    def analyze(self, frame, prior_state=None):
        self.calls += 1
        similarity = 0.5 if _at(frame, self.trigger_at) else 0.99
        return self._signal(frame, 0.9, FacePayload(face_count=1, identity_similarity=similarity))


class ScriptedObjectPlugin(DetectorPlugin):
    """Empty desk; a phone appears at trigger_at"""

    kind = SignalKind.OBJECT

    def __init__(self, trigger_at: Optional[float] = None, name: Optional[str] = None):
        super().__init__(name)
        self.trigger_at = trigger_at

    def analyze(self, frame, prior_state=None):
        objects = ()
        if _at(frame, self.trigger_at):
            objects = (DetectedObject("cell phone", 0.85, (10, 10, 20, 40)),)
        return self._signal(frame, 0.9, ObjectPayload(objects=objects))


class StalledPlugin(DetectorPlugin):
    """Blocks until released"""

    kind = SignalKind.LIGHTING

    def __init__(self, name: Optional[str] = None):
        super().__init__(name)
        self.release = threading.Event()
        self.started = threading.Event()

    def analyze(self, frame, prior_state=None):
        self.started.set()
        self.release.wait(timeout=5.0)
        return self._no_evidence(frame, "released")


class FailingPlugin(DetectorPlugin):
    kind = SignalKind.REFLECTION

    def analyze(self, frame, prior_state=None):
        raise RuntimeError("model crashed")


class WrongKindPlugin(DetectorPlugin):
    kind = SignalKind.GAZE

    def analyze(self, frame, prior_state=None):
        return Signal(kind=SignalKind.FACE, confidence=1.0, timestamp=frame.timestamp)


@pytest.fixture
def calibration():
    """Identity-mapped calibration profile"""
    return CalibrationProfile.identity("test-profile")


@pytest.fixture
def enrolled_identity():
    return IdentityProfile.from_array("candidate-1", make_landmarks())


@pytest.fixture
def frame_factory():
    return make_frame


@pytest.fixture
def landmark_factory():
    return make_landmarks


@pytest.fixture
def plugins():
    """Namespace of scripted plugin classes"""
    class _Plugins:
        Face = ScriptedFacePlugin
        Objects = ScriptedObjectPlugin
        Stalled = StalledPlugin
        Failing = FailingPlugin
        WrongKind = WrongKindPlugin
    return _Plugins


@pytest.fixture
def app(monkeypatch):
    """FastAPI app with scripted plugins in place of the vision stack"""
    import integrity_monitor.api as api
    from integrity_monitor.detectors import LightingDetector
    from integrity_monitor.main import app

    monkeypatch.setattr(api, "build_default_plugins", lambda calibration, model_dir=None: [
        ScriptedFacePlugin(),
        LightingDetector(baseline=calibration.lighting_baseline),
    ])
    return app


@pytest.fixture
def client(app):
    """Test client; the context keeps one event loop alive for running scans"""
    from fastapi.testclient import TestClient

    with TestClient(app) as test_client:
        yield test_client
