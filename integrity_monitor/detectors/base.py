"""
Detector Plugin Contract

Plugins turn one immutable frame into one Signal. Each instance owns
its own temporal state and models; nothing is shared between plugins
or between orchestrators.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional

import numpy as np

from ..types import BoundingBox, DetectedObject, Frame, Signal, SignalKind


class DetectorPlugin(ABC):
    """
    Base class for detector plugins.

    Subclasses set `kind` and implement analyze(). analyze() runs on a
    worker thread and must only read the frame.
    """

    kind: SignalKind

    def __init__(self, name: Optional[str] = None):
        self.name = name or self.__class__.__name__

    @abstractmethod
    def analyze(self, frame: Frame, prior_state: Optional[Signal] = None) -> Signal:
        """
        Analyze a frame.

        Args:
            frame: Immutable RGBA frame
            prior_state: This plugin's previous signal, if any

        Returns:
            Signal of this plugin's kind
        """
        pass

    def reset(self) -> None:
        """Drop private temporal state before a new scan"""

    def close(self) -> None:
        """Release models or devices"""

    def _signal(self, frame: Frame, confidence: float, payload: Any) -> Signal:
        return Signal(
            kind=self.kind,
            confidence=float(min(1.0, max(0.0, confidence))),
            timestamp=frame.timestamp,
            payload=payload,
            source=self.name,
        )

    def _no_evidence(self, frame: Frame, reason: str) -> Signal:
        return Signal.degraded(self.kind, frame.timestamp, self.name, reason)


# ----------------------------------------------------------------------
# External capabilities
# ----------------------------------------------------------------------

@dataclass(frozen=True, eq=False)
class FaceObservation:
    """One face reported by a landmark provider"""
    bbox: BoundingBox
    landmarks: Optional[np.ndarray] = None  # (68, 2)
    confidence: float = 1.0
    iris_centers: Optional[np.ndarray] = None  # (2, 2) left, right


class LandmarkProvider(ABC):
    """Face detection and 68-point landmark extraction"""

    @abstractmethod
    def detect(self, image_bgr: np.ndarray) -> List[FaceObservation]:
        pass


class ObjectModel(ABC):
    """Object detection returning labelled boxes"""

    @abstractmethod
    def predict(self, image_bgr: np.ndarray) -> List[DetectedObject]:
        pass
