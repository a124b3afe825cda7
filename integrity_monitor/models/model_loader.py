"""
Model Loader - Locates and loads ML model weights

Every call builds a fresh model instance; callers own what they load so
concurrent sessions never share detector state.
"""

import importlib.util
import os
import logging
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)

# Default model directory (overridable with INTEGRITY_MODEL_DIR)
MODELS_DIR = os.environ.get("INTEGRITY_MODEL_DIR", os.path.join(os.path.dirname(__file__), "weights"))

DLIB_PREDICTOR_FILE = "shape_predictor_68_face_landmarks.dat"
YOLO_WEIGHTS_FILE = "yolov8n.pt"


def _search_paths(filename: str, model_dir: Optional[str] = None) -> List[str]:
    dirs = [d for d in (model_dir, MODELS_DIR) if d]
    return [os.path.join(d, filename) for d in dirs] + [filename]


def find_model_file(filename: str, model_dir: Optional[str] = None) -> Optional[str]:
    """
    Find a weights file.

    Args:
        filename: Weights file name
        model_dir: Extra directory searched first

    Returns:
        Path to the file or None if not found
    """
    for path in _search_paths(filename, model_dir):
        if os.path.exists(path):
            return path
    return None


def load_dlib_predictor(path: Optional[str] = None, model_dir: Optional[str] = None):
    """
    Load dlib shape predictor for 68-point facial landmarks.

    Model file: shape_predictor_68_face_landmarks.dat
    Download from: http://dlib.net/files/shape_predictor_68_face_landmarks.dat.bz2

    Returns:
        dlib.shape_predictor instance
    """
    import dlib

    path = path or find_model_file(DLIB_PREDICTOR_FILE, model_dir)
    if path is None or not os.path.exists(path):
        raise FileNotFoundError(
            f"{DLIB_PREDICTOR_FILE} not found. "
            f"Download from http://dlib.net/files/shape_predictor_68_face_landmarks.dat.bz2 "
            f"and place in {model_dir or MODELS_DIR}"
        )
    logger.info(f"Loading dlib predictor from: {path}")
    return dlib.shape_predictor(path)


def load_yolo_model(path: Optional[str] = None, model_dir: Optional[str] = None):
    """
    Load a YOLO model for object detection.

    Falls back to the stock yolov8n weights (downloaded by ultralytics)
    when no local file is found.

    Returns:
        YOLO model instance
    """
    from ultralytics import YOLO

    path = path or find_model_file(YOLO_WEIGHTS_FILE, model_dir)
    if path is None:
        logger.warning("Local YOLO weights not found, using yolov8n")
        return YOLO("yolov8n.pt")
    logger.info(f"Loading YOLO model from: {path}")
    return YOLO(path)


def check_models(model_dir: Optional[str] = None) -> Dict[str, bool]:
    """
    Check which optional vision backends are usable.

    Returns:
        Dict with model status
    """
    return {
        "dlib": importlib.util.find_spec("dlib") is not None,
        "dlib_predictor": find_model_file(DLIB_PREDICTOR_FILE, model_dir) is not None,
        "ultralytics": importlib.util.find_spec("ultralytics") is not None,
        "yolo_weights": find_model_file(YOLO_WEIGHTS_FILE, model_dir) is not None,
    }
