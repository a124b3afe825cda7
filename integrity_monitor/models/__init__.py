"""Model loading utilities"""

from .model_loader import (
    check_models,
    find_model_file,
    load_dlib_predictor,
    load_yolo_model,
)

__all__ = ["check_models", "find_model_file", "load_dlib_predictor", "load_yolo_model"]
