"""
Frame Quality Checker - Estimates how trustworthy a frame is for analysis
"""

import logging
from typing import Any, Dict, Iterable, Optional, Tuple

import cv2
import numpy as np

from ..types import Frame

logger = logging.getLogger(__name__)

# Confidence multiplier applied per quality issue
ISSUE_PENALTIES: Dict[str, float] = {
    "too_small": 0.5,
    "too_dark": 0.5,
    "too_bright": 0.6,
    "too_blurry": 0.7,
}


def check_frame_quality(
    frame: Frame,
    min_brightness: float = 40,
    max_brightness: float = 220,
    min_blur_score: float = 50,
    min_size: Tuple[int, int] = (100, 100),
    penalize: Optional[Iterable[str]] = None
) -> Dict[str, Any]:
    """
    Check frame quality before analysis.

    Args:
        frame: RGBA frame
        min_brightness: Minimum average brightness (0-255)
        max_brightness: Maximum average brightness (0-255)
        min_blur_score: Minimum Laplacian variance for blur detection
        min_size: Minimum (width, height) dimensions
        penalize: Issues that lower confidence (default: all of ISSUE_PENALTIES)

    Returns:
        Dict with:
            - is_valid: bool
            - issues: List of quality issues
            - brightness: float (0-255)
            - blur_score: float
            - dimensions: Tuple[int, int]
            - confidence: float (0-1) multiplier for signal confidence
    """
    issues = []

    if frame.pixels.size == 0:
        return {
            "is_valid": False,
            "issues": ["empty_frame"],
            "brightness": 0,
            "blur_score": 0,
            "dimensions": (0, 0),
            "confidence": 0.0,
        }

    dimensions = (frame.width, frame.height)
    if frame.width < min_size[0] or frame.height < min_size[1]:
        issues.append("too_small")

    gray = frame.to_gray()

    brightness = float(np.mean(gray))
    if brightness < min_brightness:
        issues.append("too_dark")
    elif brightness > max_brightness:
        issues.append("too_bright")

    blur_score = float(cv2.Laplacian(gray, cv2.CV_64F).var())
    if blur_score < min_blur_score:
        issues.append("too_blurry")

    penalized = set(ISSUE_PENALTIES if penalize is None else penalize)
    confidence = 1.0
    for issue in penalized.intersection(issues):
        confidence *= ISSUE_PENALTIES.get(issue, 1.0)

    return {
        "is_valid": len(issues) == 0,
        "issues": issues,
        "brightness": brightness,
        "blur_score": blur_score,
        "dimensions": dimensions,
        "confidence": confidence,
    }
