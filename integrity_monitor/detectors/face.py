"""
Face Detector - Face presence, count and primary-face landmarks
"""

import logging
from typing import List, Optional

import cv2
import numpy as np

from ..models import load_dlib_predictor
from ..types import FacePayload, Frame, Signal, SignalKind
from ..utils.frame_quality import check_frame_quality
from .base import DetectorPlugin, FaceObservation, LandmarkProvider

logger = logging.getLogger(__name__)


class DlibLandmarkProvider(LandmarkProvider):
    """
    Face detection with dlib's HOG detector and 68-point landmarks.

    Requires the `vision` extra and the shape predictor weights.
    """

    def __init__(self, predictor_path: Optional[str] = None, model_dir: Optional[str] = None, upsample: int = 0):
        """
        Initialize landmark provider.

        Args:
            predictor_path: Path to dlib shape predictor model
            model_dir: Directory searched for the predictor
            upsample: Number of image upsamplings for small faces
        """
        import dlib

        self.detector = dlib.get_frontal_face_detector()
        self.predictor = load_dlib_predictor(predictor_path, model_dir)
        self.upsample = upsample

    def detect(self, image_bgr: np.ndarray) -> List[FaceObservation]:
        gray = cv2.cvtColor(image_bgr, cv2.COLOR_BGR2GRAY)
        rects, scores, _ = self.detector.run(gray, self.upsample, 0.0)

        observations = []
        for rect, score in zip(rects, scores):
            marks = self.predictor(gray, rect)
            points = np.array([(marks.part(i).x, marks.part(i).y) for i in range(68)], dtype=np.float64)
            observations.append(FaceObservation(
                bbox=(rect.left(), rect.top(), rect.width(), rect.height()),
                landmarks=points,
                confidence=float(np.clip(0.6 + 0.2 * score, 0.0, 1.0)),
            ))
        return observations


def primary_face(observations: List[FaceObservation]) -> Optional[FaceObservation]:
    """Largest face in view"""
    if not observations:
        return None
    return max(observations, key=lambda o: o.bbox[2] * o.bbox[3])


class FaceDetector(DetectorPlugin):
    """
    Reports how many faces are visible and the primary face's landmarks.

    Identity comparison against the enrolled profile happens in the
    temporal analyzer, which owns the identity template.
    """

    kind = SignalKind.FACE

    def __init__(self, provider: LandmarkProvider, name: Optional[str] = None):
        super().__init__(name)
        self.provider = provider

    def analyze(self, frame: Frame, prior_state: Optional[Signal] = None) -> Signal:
        quality = check_frame_quality(frame)
        observations = self.provider.detect(frame.to_bgr())
        face = primary_face(observations)

        if face is None:
            # "no face" is only as trustworthy as the image it was read from
            return self._signal(frame, quality["confidence"], FacePayload(face_count=0))

        payload = FacePayload(
            face_count=len(observations),
            bbox=face.bbox,
            landmarks=face.landmarks,
        )
        return self._signal(frame, face.confidence * quality["confidence"], payload)
