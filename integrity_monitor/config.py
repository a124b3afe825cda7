"""
Integrity Monitor Configuration Settings

Every threshold the decision pipeline uses lives here. Values can be
overridden through INTEGRITY_* environment variables, a .env file, or
keyword overrides passed to build_settings().
"""

from typing import Any, Dict, List, Optional, Tuple

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings

from .exceptions import ConfigValidationError
from .scoring.taxonomy import (
    DEFAULT_MIN_CONFIDENCE,
    DEFAULT_MIN_EPISODE_FRAMES,
    DEFAULT_SEVERITY_BANDS,
    DEFAULT_STABILITY_GAIN,
    OBJECT_SEVERITY,
    OBJECT_VIOLATION_MAP,
    SEVERITY_WEIGHTS,
)


class MonitorSettings(BaseSettings):
    """Configuration for the monitoring engine."""

    # Scan cadence
    frame_rate: float = Field(30.0, gt=0, le=240)
    scan_duration_ms: Optional[float] = Field(None, gt=0)
    plugin_timeout_ms: float = Field(50.0, gt=0)

    # Decision thresholds
    object_detection_threshold: float = Field(0.7, ge=0, le=1)
    auto_block_threshold: float = Field(0.8, ge=0, le=1)
    review_threshold: float = Field(0.6, ge=0, le=1)
    warning_threshold: float = Field(0.4, ge=0, le=1)
    min_signal_confidence: float = Field(0.3, ge=0, le=1)

    # Temporal analysis
    temporal_window_frames: int = Field(30, ge=2)
    stability_window: int = Field(10, ge=2)
    lighting_change_threshold: float = Field(0.15, gt=0, le=1)
    color_temperature_change_threshold: float = Field(500.0, gt=0)
    shadow_manipulation_threshold: float = Field(0.3, ge=0, le=1)
    identity_threshold: float = Field(0.95, ge=0, le=1)
    identity_adaptation_rate: float = Field(0.0, ge=0, le=1)
    max_gaze_velocity_deg_per_s: float = Field(900.0, gt=0)

    # Environment detection
    green_screen_confidence_threshold: float = Field(0.7, ge=0, le=1)
    edge_artifact_threshold: float = Field(0.15, ge=0, le=1)
    baseline_deviation_threshold: float = Field(0.25, gt=0, le=1)
    mirror_risk_threshold: float = Field(0.5, ge=0, le=1)
    hidden_screen_threshold: float = Field(0.6, ge=0, le=1)

    # Episode debouncing
    episode_release_frames: int = Field(1, ge=1)
    min_episode_frames: Dict[str, int] = Field(default_factory=lambda: dict(DEFAULT_MIN_EPISODE_FRAMES))

    # Policy tables
    min_confidence: Dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_MIN_CONFIDENCE))
    severity_bands: Dict[str, List[Tuple[float, str]]] = Field(
        default_factory=lambda: {k: list(v) for k, v in DEFAULT_SEVERITY_BANDS.items()}
    )
    stability_gain: Dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_STABILITY_GAIN))
    object_violation_map: Dict[str, str] = Field(default_factory=lambda: dict(OBJECT_VIOLATION_MAP))
    object_severity: Dict[str, str] = Field(default_factory=lambda: dict(OBJECT_SEVERITY))

    class Config:
        env_prefix = "INTEGRITY_"
        env_file = ".env"
        extra = "ignore"

    @field_validator("severity_bands")
    @classmethod
    def check_severity_bands(cls, bands: Dict[str, List[Tuple[float, str]]]):
        for violation_type, table in bands.items():
            if not table:
                raise ValueError(f"severity band table for '{violation_type}' is empty")
            minimums = [m for m, _ in table]
            if minimums != sorted(minimums):
                raise ValueError(f"severity bands for '{violation_type}' must be ascending")
            for _, severity in table:
                if severity not in SEVERITY_WEIGHTS:
                    raise ValueError(f"unknown severity '{severity}' for '{violation_type}'")
        return bands

    @field_validator("object_severity")
    @classmethod
    def check_object_severity(cls, table: Dict[str, str]):
        for label, severity in table.items():
            if severity not in SEVERITY_WEIGHTS:
                raise ValueError(f"unknown severity '{severity}' for object '{label}'")
        return table

    @field_validator("min_confidence")
    @classmethod
    def check_min_confidence(cls, table: Dict[str, float]):
        for violation_type, value in table.items():
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"min_confidence for '{violation_type}' must be in [0, 1]")
        return table

    @field_validator("min_episode_frames")
    @classmethod
    def check_episode_frames(cls, table: Dict[str, int]):
        for violation_type, value in table.items():
            if value < 1:
                raise ValueError(f"min_episode_frames for '{violation_type}' must be >= 1")
        return table

    @model_validator(mode="after")
    def check_threshold_order(self):
        if self.warning_threshold > self.review_threshold:
            raise ValueError("warning_threshold cannot exceed review_threshold")
        if self.review_threshold > self.auto_block_threshold:
            raise ValueError("review_threshold cannot exceed auto_block_threshold")
        if self.stability_window > self.temporal_window_frames:
            raise ValueError("stability_window cannot exceed temporal_window_frames")
        return self

    @property
    def frame_interval_s(self) -> float:
        return 1.0 / self.frame_rate

    @property
    def plugin_timeout_s(self) -> float:
        return self.plugin_timeout_ms / 1000.0

    def min_confidence_for(self, violation_type: str) -> float:
        return self.min_confidence.get(violation_type, self.warning_threshold)

    def min_episode_frames_for(self, violation_type: str) -> int:
        return self.min_episode_frames.get(violation_type, 1)

    def stability_gain_for(self, kind: str) -> float:
        return self.stability_gain.get(kind, 1.0)


class ServiceSettings(BaseSettings):
    """Configuration for the HTTP service wrapper."""

    APP_NAME: str = "Integrity Monitor Service"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_TO_FILE: bool = False
    LOG_DIR: str = "logs"
    MODEL_DIR: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


def build_settings(**overrides: Any) -> MonitorSettings:
    """
    Build validated settings, converting pydantic errors.

    Args:
        overrides: Field values that take precedence over env/.env

    Returns:
        MonitorSettings

    Raises:
        ConfigValidationError: If any value is out of range
    """
    try:
        return MonitorSettings(**overrides)
    except ValidationError as e:
        raise ConfigValidationError(str(e)) from e


def merge_settings(base: MonitorSettings, overrides: Optional[Dict[str, Any]]) -> MonitorSettings:
    """Return a re-validated copy of base with overrides applied"""
    if not overrides:
        return base
    data = base.model_dump()
    data.update(overrides)
    return build_settings(**data)


settings = ServiceSettings()
