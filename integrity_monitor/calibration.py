"""
Calibration Profiles

Produced by an external calibration flow and consumed read-only by the
monitoring core.
"""

from datetime import datetime, timezone
from typing import List, Optional, Tuple

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Landmark subset (68-point layout) compared for identity drift:
# jaw corners, chin, brows, nose bridge/tip, eye corners, mouth corners
IDENTITY_KEY_INDICES: Tuple[int, ...] = (0, 8, 16, 17, 21, 22, 26, 27, 30, 36, 39, 42, 45, 48, 54)


class HeadPoseBounds(BaseModel):
    model_config = ConfigDict(frozen=True)

    yaw_range: Tuple[float, float] = (-30.0, 30.0)
    pitch_range: Tuple[float, float] = (-20.0, 20.0)

    @field_validator("yaw_range", "pitch_range")
    @classmethod
    def check_range(cls, value: Tuple[float, float]):
        if value[0] >= value[1]:
            raise ValueError("range minimum must be below maximum")
        return value

    def excess(self, yaw: float, pitch: float) -> float:
        """Degrees the pose lies outside the bounds (0 when inside)"""
        yaw_excess = max(self.yaw_range[0] - yaw, yaw - self.yaw_range[1], 0.0)
        pitch_excess = max(self.pitch_range[0] - pitch, pitch - self.pitch_range[1], 0.0)
        return max(yaw_excess, pitch_excess)


class LightingBaseline(BaseModel):
    model_config = ConfigDict(frozen=True)

    mean: float = Field(..., ge=0, le=1)
    variance: float = Field(0.0, ge=0)
    histogram: Optional[Tuple[float, ...]] = None


class CalibrationProfile(BaseModel):
    """
    Gaze mapping, head-pose bounds and lighting baseline for one candidate.

    The gaze homography maps normalized raw eye features (iris position
    within the eye, 0..1 on each axis) to normalized screen coordinates.
    """
    model_config = ConfigDict(frozen=True)

    profile_id: str
    homography: Tuple[Tuple[float, float, float], Tuple[float, float, float], Tuple[float, float, float]]
    bias: Tuple[float, float] = (0.0, 0.0)
    head_pose_bounds: HeadPoseBounds = Field(default_factory=HeadPoseBounds)
    lighting_baseline: Optional[LightingBaseline] = None
    screen_angular_size: Tuple[float, float] = (40.0, 25.0)
    quality: float = Field(1.0, ge=0, le=1)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def check_homography(self):
        if abs(np.linalg.det(self.homography_matrix)) < 1e-9:
            raise ValueError("gaze homography must be invertible")
        if min(self.screen_angular_size) <= 0:
            raise ValueError("screen_angular_size must be positive")
        return self

    @property
    def homography_matrix(self) -> np.ndarray:
        return np.asarray(self.homography, dtype=np.float64)

    def map_gaze(self, raw_x: float, raw_y: float) -> Tuple[float, float]:
        """Project a raw eye feature to normalized screen coordinates"""
        point = self.homography_matrix @ np.array([raw_x, raw_y, 1.0])
        if abs(point[2]) < 1e-9:
            return float("inf"), float("inf")
        return (
            float(point[0] / point[2] + self.bias[0]),
            float(point[1] / point[2] + self.bias[1]),
        )

    def screen_to_angles(self, screen_x: float, screen_y: float) -> Tuple[float, float]:
        """Yaw/pitch in degrees relative to the screen centre"""
        width_deg, height_deg = self.screen_angular_size
        return (screen_x - 0.5) * width_deg, (0.5 - screen_y) * height_deg

    def off_screen_deviation(self, screen_x: float, screen_y: float) -> float:
        """Angular distance (degrees) from the screen rectangle, 0 if inside"""
        width_deg, height_deg = self.screen_angular_size
        dx = max(0.0 - screen_x, screen_x - 1.0, 0.0) * width_deg
        dy = max(0.0 - screen_y, screen_y - 1.0, 0.0) * height_deg
        return float(np.hypot(dx, dy))

    @classmethod
    def identity(cls, profile_id: str = "uncalibrated", **kwargs) -> "CalibrationProfile":
        """Profile with an identity gaze mapping, mainly for tests and demos"""
        return cls(
            profile_id=profile_id,
            homography=((1.0, 0.0, 0.0), (0.0, 1.0, 0.0), (0.0, 0.0, 1.0)),
            **kwargs,
        )


class IdentityProfile(BaseModel):
    """Enrolled landmark descriptor of the expected candidate"""
    model_config = ConfigDict(frozen=True)

    identity_id: str
    landmarks: Tuple[Tuple[float, float], ...]

    @field_validator("landmarks")
    @classmethod
    def check_landmarks(cls, value):
        if len(value) <= max(IDENTITY_KEY_INDICES):
            raise ValueError(f"need at least {max(IDENTITY_KEY_INDICES) + 1} landmarks, got {len(value)}")
        return value

    @classmethod
    def from_array(cls, identity_id: str, landmarks: np.ndarray) -> "IdentityProfile":
        return cls(identity_id=identity_id, landmarks=tuple(map(tuple, np.asarray(landmarks, dtype=float).tolist())))

    def as_array(self) -> np.ndarray:
        return np.asarray(self.landmarks, dtype=np.float64)


def normalize_landmarks(landmarks: np.ndarray) -> np.ndarray:
    """Translate to the centroid and scale by the inter-ocular distance"""
    points = np.asarray(landmarks, dtype=np.float64)
    centered = points - points.mean(axis=0)
    scale = np.linalg.norm(points[36] - points[45])
    if scale < 1e-6:
        scale = max(float(np.abs(centered).max()), 1e-6)
    return centered / scale


def landmark_similarity(current: np.ndarray, enrolled: np.ndarray,
                        indices: Tuple[int, ...] = IDENTITY_KEY_INDICES) -> float:
    """
    Similarity between two landmark sets in [0, 1].

    Mean over the key indices of max(0, 1 - distance * 15), where
    distance is measured on landmarks normalized by inter-ocular span.
    """
    a = normalize_landmarks(current)
    b = normalize_landmarks(enrolled)
    idx: List[int] = list(indices)
    distances = np.linalg.norm(a[idx] - b[idx], axis=1)
    return float(np.mean(np.maximum(0.0, 1.0 - distances * 15.0)))
