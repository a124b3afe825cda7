"""
Lighting Detector - Luminance, colour temperature, shadows and chroma key

Produces the per-frame lighting measurements the temporal analyzer
tracks for abrupt changes and shadow instability.
"""

import logging
from typing import List, Optional, Tuple

import cv2
import numpy as np

from ..calibration import LightingBaseline
from ..types import Frame, LightingPayload, ShadowRegion, Signal, SignalKind
from ..utils.frame_quality import check_frame_quality
from .base import DetectorPlugin

logger = logging.getLogger(__name__)

# Kelvin
NATURAL_CCT_RANGE = (2700.0, 6500.0)
ARTIFICIAL_CCT_RANGE = (3000.0, 6500.0)

# Used when the frame has no brightness gradient to read a direction from
DEFAULT_DIRECTION_CONSISTENCY = 0.7


def srgb_to_linear(channel: np.ndarray) -> np.ndarray:
    c = channel / 255.0
    return np.where(c <= 0.04045, c / 12.92, ((c + 0.055) / 1.055) ** 2.4)


def estimate_color_temperature(bgr: np.ndarray) -> float:
    """
    Correlated colour temperature in Kelvin (McCamy approximation).

    Returns 0.0 for frames with no measurable light.
    """
    b, g, r = (float(v) for v in bgr.reshape(-1, 3).mean(axis=0))
    rl, gl, bl = (float(srgb_to_linear(np.array(v))) for v in (r, g, b))

    x_ = 0.4124 * rl + 0.3576 * gl + 0.1805 * bl
    y_ = 0.2126 * rl + 0.7152 * gl + 0.0722 * bl
    z_ = 0.0193 * rl + 0.1192 * gl + 0.9505 * bl
    total = x_ + y_ + z_
    if total <= 1e-6:
        return 0.0

    x, y = x_ / total, y_ / total
    if abs(0.1858 - y) < 1e-6:
        return 0.0
    n = (x - 0.3320) / (0.1858 - y)
    cct = 449.0 * n ** 3 + 3525.0 * n ** 2 + 6823.3 * n + 5520.33
    return float(np.clip(cct, 1000.0, 40000.0))


def lighting_scores(color_temperature: float, uniformity: float, source_count: int,
                    direction_consistency: float) -> Tuple[float, float]:
    """
    Score how natural and how artificial the scene lighting looks.

    Natural light sits in the daylight CCT range, is even and comes from
    one consistent direction. Artificial light adds discrete sources and
    uneven falloff. A scene can score high on both (mixed lighting).

    Returns:
        (natural score, artificial score), each in [0, 1]
    """
    natural = 0.0
    if NATURAL_CCT_RANGE[0] <= color_temperature <= NATURAL_CCT_RANGE[1]:
        natural += 0.4
    natural += 0.3 * uniformity
    natural += 0.3 * min(direction_consistency, 1.0)

    artificial = 0.0
    if ARTIFICIAL_CCT_RANGE[0] <= color_temperature <= ARTIFICIAL_CCT_RANGE[1]:
        artificial += 0.3
    artificial += 0.4 * min(max(source_count, 1) / 3.0, 1.0)
    artificial += 0.3 * (1.0 - uniformity)

    return min(natural, 1.0), min(artificial, 1.0)


class LightingDetector(DetectorPlugin):
    """
    Measures scene lighting.

    Luminance uses Rec.601 luma normalized to [0, 1]. Shadows are dark
    connected regions relative to the frame median; their internal
    uniformity gives the shadow consistency the temporal analyzer
    watches. Chroma-key backgrounds are detected in HSV.
    """

    kind = SignalKind.LIGHTING

    # OpenCV hue scale (0-180)
    CHROMA_RANGES = {
        "green": (30, 90),
        "blue": (90, 120),
    }
    MIN_CHROMA_SATURATION = 0.3 * 255
    MIN_CHROMA_VALUE = 0.2 * 255

    # Chroma coverage at which confidence saturates
    FULL_COVERAGE = 0.2

    # Darkness and blur are measurements here, not noise
    QUALITY_PENALTIES = ("too_small",)

    MIXED_LIGHTING_SCORE = 0.4

    MIN_SOURCE_LEVEL = 220
    MIN_SOURCE_AREA = 0.002

    def __init__(
        self,
        name: Optional[str] = None,
        baseline: Optional[LightingBaseline] = None,
        min_shadow_area: float = 0.005,
        min_chroma_region: float = 0.05
    ):
        """
        Initialize lighting detector.

        Args:
            name: Plugin name
            baseline: Calibrated lighting baseline, if any
            min_shadow_area: Minimum shadow region as a fraction of the frame
            min_chroma_region: Minimum chroma-key region as a fraction of the frame
        """
        super().__init__(name)
        self.baseline = baseline
        self.min_shadow_area = min_shadow_area
        self.min_chroma_region = min_chroma_region

    def analyze(self, frame: Frame, prior_state: Optional[Signal] = None) -> Signal:
        bgr = frame.to_bgr()
        gray = cv2.cvtColor(bgr, cv2.COLOR_BGR2GRAY)
        quality = check_frame_quality(frame, penalize=self.QUALITY_PENALTIES)

        luminance = float(gray.mean()) / 255.0
        color_temperature = estimate_color_temperature(bgr)
        uniformity = 1.0 - min(1.0, float(gray.std()) / 128.0)

        shadows = self._detect_shadows(gray)
        if shadows:
            total_area = sum(s.area_ratio for s in shadows)
            shadow_consistency = sum(s.consistency * s.area_ratio for s in shadows) / total_area
        else:
            shadow_consistency = 1.0

        coverage, chroma_confidence, edge_artifacts, replacement = self._detect_chroma_key(bgr)

        source_count = self._count_light_sources(gray)
        natural, artificial = lighting_scores(
            color_temperature, uniformity, source_count, self._direction_consistency(gray)
        )

        baseline_deviation = None
        if self.baseline is not None:
            baseline_deviation = abs(luminance - self.baseline.mean)

        payload = LightingPayload(
            luminance=luminance,
            color_temperature=color_temperature,
            shadow_consistency=float(shadow_consistency),
            uniformity=uniformity,
            shadow_regions=tuple(shadows),
            green_screen_coverage=coverage,
            green_screen_confidence=chroma_confidence,
            edge_artifact_score=edge_artifacts,
            replacement_type=replacement,
            baseline_deviation=baseline_deviation,
            light_source_count=source_count,
            natural_lighting_score=natural,
            artificial_lighting_score=artificial,
            mixed_lighting=natural > self.MIXED_LIGHTING_SCORE and artificial > self.MIXED_LIGHTING_SCORE,
        )
        return self._signal(frame, quality["confidence"], payload)

    def _detect_shadows(self, gray: np.ndarray) -> List[ShadowRegion]:
        """Dark connected regions with their edge sharpness and internal consistency"""
        median = float(np.median(gray))
        threshold = max(10.0, 0.5 * median)
        mask = (gray < threshold).astype(np.uint8) * 255
        mask = cv2.morphologyEx(mask, cv2.MORPH_OPEN, np.ones((5, 5), np.uint8))

        count, labels, stats, _ = cv2.connectedComponentsWithStats(mask, connectivity=8)
        frame_area = float(gray.shape[0] * gray.shape[1])

        gradient = cv2.magnitude(
            cv2.Sobel(gray, cv2.CV_32F, 1, 0, ksize=3),
            cv2.Sobel(gray, cv2.CV_32F, 0, 1, ksize=3),
        )

        regions = []
        for label in range(1, count):
            x, y, w, h, area = (int(v) for v in stats[label])
            if area / frame_area < self.min_shadow_area:
                continue
            region = labels == label
            values = gray[region].astype(np.float64)
            mean = float(values.mean())

            border = cv2.morphologyEx(region.astype(np.uint8), cv2.MORPH_GRADIENT, np.ones((3, 3), np.uint8)) > 0
            sharpness = float(np.clip(gradient[border].mean() / 255.0, 0.0, 1.0)) if border.any() else 0.0
            consistency = float(np.clip(1.0 - values.std() / (mean + 1.0), 0.0, 1.0))

            regions.append(ShadowRegion(
                bounds=(x, y, w, h),
                area_ratio=area / frame_area,
                intensity=mean / 255.0,
                sharpness=sharpness,
                consistency=consistency,
            ))
        return regions

    def _count_light_sources(self, gray: np.ndarray) -> int:
        """Bright blobs standing out from the scene (lamps, windows, screens)"""
        level = max(self.MIN_SOURCE_LEVEL, float(np.median(gray)) + 60.0)
        mask = (gray >= level).astype(np.uint8)
        mask = cv2.morphologyEx(mask, cv2.MORPH_OPEN, np.ones((3, 3), np.uint8))
        count, _, stats, _ = cv2.connectedComponentsWithStats(mask, connectivity=8)
        min_area = self.MIN_SOURCE_AREA * gray.size
        return sum(1 for label in range(1, count) if stats[label, cv2.CC_STAT_AREA] >= min_area)

    @staticmethod
    def _direction_consistency(gray: np.ndarray) -> float:
        """Coherence of the coarse brightness gradient; 1.0 for a single directional falloff"""
        small = cv2.resize(gray, (32, 24), interpolation=cv2.INTER_AREA).astype(np.float32)
        gx = cv2.Sobel(small, cv2.CV_32F, 1, 0, ksize=3)
        gy = cv2.Sobel(small, cv2.CV_32F, 0, 1, ksize=3)
        total = float(np.hypot(gx, gy).sum())
        if total < 1e-3:
            return DEFAULT_DIRECTION_CONSISTENCY
        return float(np.hypot(gx.sum(), gy.sum()) / total)

    def _detect_chroma_key(self, bgr: np.ndarray) -> Tuple[float, float, float, Optional[str]]:
        """
        Returns:
            (coverage, confidence, edge artifact score, replacement type)
        """
        hsv = cv2.cvtColor(bgr, cv2.COLOR_BGR2HSV)
        hue, sat, val = hsv[..., 0], hsv[..., 1], hsv[..., 2]
        base = (sat >= self.MIN_CHROMA_SATURATION) & (val >= self.MIN_CHROMA_VALUE)
        frame_area = float(hue.size)

        best: Tuple[float, float, float, Optional[str]] = (0.0, 0.0, 0.0, None)
        for low, high in self.CHROMA_RANGES.values():
            mask = (base & (hue >= low) & (hue < high)).astype(np.uint8)
            count, labels, stats, _ = cv2.connectedComponentsWithStats(mask, connectivity=8)

            uniformities = []
            covered = 0
            region_mask = np.zeros_like(mask)
            for label in range(1, count):
                area = int(stats[label, cv2.CC_STAT_AREA])
                if area / frame_area < self.min_chroma_region:
                    continue
                region = labels == label
                hue_spread = float(hue[region].std()) / max(1.0, (high - low) / 2.0)
                sat_spread = float(sat[region].std()) / 128.0
                uniformities.append(float(np.clip(1.0 - 0.5 * (hue_spread + sat_spread), 0.0, 1.0)))
                covered += area
                region_mask[region] = 1

            if not uniformities:
                continue
            coverage = covered / frame_area
            uniformity = float(np.mean(uniformities))
            confidence = uniformity * min(1.0, coverage / self.FULL_COVERAGE)
            if confidence > best[1]:
                best = (coverage, confidence, self._edge_artifacts(bgr, region_mask), self._classify_replacement(uniformity))
        return best

    @staticmethod
    def _edge_artifacts(bgr: np.ndarray, region_mask: np.ndarray) -> float:
        """Share of pixels around the keyed region showing colour spill"""
        kernel = np.ones((7, 7), np.uint8)
        ring = (cv2.dilate(region_mask, kernel) > 0) & (region_mask == 0)
        if not ring.any():
            return 0.0
        b, g, r = (bgr[..., i].astype(np.int16)[ring] for i in range(3))
        spill = (g > r + 20) & (g > b + 20)
        return float(spill.mean())

    @staticmethod
    def _classify_replacement(uniformity: float) -> str:
        if uniformity > 0.9:
            return "static-image"
        if uniformity > 0.7:
            return "virtual-background"
        if uniformity > 0.5:
            return "video"
        return "unknown"
