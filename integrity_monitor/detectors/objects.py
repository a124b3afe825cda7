"""
Object Detector - Unauthorized materials, devices and extra people
"""

import logging
from typing import List, Optional

import numpy as np

from ..models import load_yolo_model
from ..types import DetectedObject, Frame, ObjectPayload, Signal, SignalKind
from ..utils.frame_quality import check_frame_quality
from .base import DetectorPlugin, ObjectModel

logger = logging.getLogger(__name__)


class YoloObjectModel(ObjectModel):
    """
    YOLO-backed object model.

    Requires the `vision` extra. The model is loaded on first use; a
    failed load is remembered and re-raised instead of retried.
    """

    def __init__(self, model_path: Optional[str] = None, model_dir: Optional[str] = None, confidence: float = 0.25):
        """
        Args:
            model_path: Path to YOLO model weights
            model_dir: Directory searched for weights
            confidence: Minimum confidence kept from the raw model output
        """
        self.confidence = confidence
        self.model = None
        self._model_path = model_path
        self._model_dir = model_dir
        self._load_error: Optional[Exception] = None

    def _ensure_model(self):
        if self.model is not None:
            return
        if self._load_error is not None:
            raise self._load_error
        try:
            self.model = load_yolo_model(self._model_path, self._model_dir)
            logger.info("YOLO model loaded successfully")
        except Exception as e:
            logger.error(f"Failed to load YOLO model: {e}")
            self._load_error = e
            raise

    def predict(self, image_bgr: np.ndarray) -> List[DetectedObject]:
        self._ensure_model()
        results = self.model.predict(image_bgr, conf=self.confidence, verbose=False)

        detections = []
        for result in results:
            if result.boxes is None:
                continue
            for box in result.boxes:
                cls_id = int(box.cls[0])
                name = self.model.names.get(cls_id, f"class_{cls_id}")
                x1, y1, x2, y2 = (int(v) for v in box.xyxy[0].tolist())
                detections.append(DetectedObject(
                    label=name.lower(),
                    confidence=float(box.conf[0]),
                    bbox=(x1, y1, x2 - x1, y2 - y1),
                ))
        return detections


class ObjectDetector(DetectorPlugin):
    """
    Reports every object the model sees.

    Mapping labels to violation types is policy, left to the decision
    engine's configurable label table.
    """

    kind = SignalKind.OBJECT

    def __init__(self, model: ObjectModel, name: Optional[str] = None):
        super().__init__(name)
        self.model = model

    def analyze(self, frame: Frame, prior_state: Optional[Signal] = None) -> Signal:
        quality = check_frame_quality(frame)
        objects = self.model.predict(frame.to_bgr())
        return self._signal(frame, quality["confidence"], ObjectPayload(objects=tuple(objects)))
