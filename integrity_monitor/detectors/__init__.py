"""Detector plugins for integrity monitoring"""

import logging
from typing import List, Optional

from ..calibration import CalibrationProfile
from ..models import check_models
from .base import DetectorPlugin, FaceObservation, LandmarkProvider, ObjectModel
from .face import DlibLandmarkProvider, FaceDetector
from .gaze import GazeDetector, HeadPoseEstimator
from .lighting import LightingDetector
from .objects import ObjectDetector, YoloObjectModel
from .reflection import ReflectionDetector

logger = logging.getLogger(__name__)


def build_default_plugins(calibration: CalibrationProfile, model_dir: Optional[str] = None) -> List[DetectorPlugin]:
    """
    Build a fresh plugin set for one orchestrator.

    Lighting and reflection analysis always run. Face, gaze and object
    plugins are added when their vision backends and weights are
    available. Each plugin gets its own model instances.
    """
    status = check_models(model_dir)
    # people and objects seen in mirrors need their own detector instance
    mirror_model = YoloObjectModel(model_dir=model_dir) if status["ultralytics"] else None
    plugins: List[DetectorPlugin] = [
        LightingDetector(baseline=calibration.lighting_baseline),
        ReflectionDetector(object_model=mirror_model),
    ]

    if status["dlib"] and status["dlib_predictor"]:
        plugins.append(FaceDetector(DlibLandmarkProvider(model_dir=model_dir)))
        plugins.append(GazeDetector(DlibLandmarkProvider(model_dir=model_dir), calibration))
    else:
        logger.warning("dlib or shape predictor unavailable, face and gaze plugins disabled")

    if status["ultralytics"]:
        plugins.append(ObjectDetector(YoloObjectModel(model_dir=model_dir)))
    else:
        logger.warning("ultralytics unavailable, object plugin disabled")

    return plugins


__all__ = [
    "DetectorPlugin",
    "FaceObservation",
    "LandmarkProvider",
    "ObjectModel",
    "DlibLandmarkProvider",
    "FaceDetector",
    "GazeDetector",
    "HeadPoseEstimator",
    "LightingDetector",
    "ObjectDetector",
    "YoloObjectModel",
    "ReflectionDetector",
    "build_default_plugins",
]
