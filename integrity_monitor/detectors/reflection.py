"""
Reflection Detector - Mirrors, reflected content and hidden screen glow
"""

import logging
from typing import List, Optional

import cv2
import numpy as np

from ..types import (
    BoundingBox,
    Frame,
    HiddenScreen,
    MirrorCandidate,
    ReflectedContent,
    ReflectionPayload,
    Signal,
    SignalKind,
)
from ..utils.frame_quality import check_frame_quality
from .base import DetectorPlugin, ObjectModel

logger = logging.getLogger(__name__)

# Risk carried by each kind of reflected content
CONTENT_RISK = {
    "person": 0.95,
    "screen": 0.9,
    "text": 0.8,
    "object": 0.7,
}


class ReflectionDetector(DetectorPlugin):
    """
    Finds reflective rectangular surfaces and what they reflect.

    Candidate confidence:
        0.4 * min(reflectivity / 0.9, 1) + 0.3 * symmetry
        + 0.2 * size_score + 0.1 * edge_sharpness   (capped at 0.99)

    A candidate becomes a mirror when at least 3 of 5 checks pass
    (reflectivity, symmetry, confidence, visible frame, reflected detail).
    """

    kind = SignalKind.REFLECTION

    # Reference resolution the size score is normalized against
    REFERENCE_AREA = 640 * 480

    def __init__(
        self,
        name: Optional[str] = None,
        reflectivity_threshold: float = 0.7,
        symmetry_threshold: float = 0.6,
        min_mirror_size: int = 2000,
        max_mirrors: int = 10,
        object_model: Optional[ObjectModel] = None
    ):
        """
        Initialize reflection detector.

        Args:
            name: Plugin name
            reflectivity_threshold: Minimum reflectivity for a mirror
            symmetry_threshold: Minimum left/right symmetry for a mirror
            min_mirror_size: Minimum candidate area in pixels at 640x480
            max_mirrors: Maximum mirrors reported per frame
            object_model: Optional model run on mirror contents
        """
        super().__init__(name)
        self.reflectivity_threshold = reflectivity_threshold
        self.symmetry_threshold = symmetry_threshold
        self.min_mirror_size = min_mirror_size
        self.max_mirrors = max_mirrors
        self.object_model = object_model

    def analyze(self, frame: Frame, prior_state: Optional[Signal] = None) -> Signal:
        bgr = frame.to_bgr()
        gray = cv2.cvtColor(bgr, cv2.COLOR_BGR2GRAY)
        hsv = cv2.cvtColor(bgr, cv2.COLOR_BGR2HSV)
        quality = check_frame_quality(frame)

        glow_mask = self._glow_mask(bgr, hsv)
        mirrors = self._find_mirrors(bgr, gray, glow_mask)

        hidden = [
            HiddenScreen(bounds=m.bounds, method="reflection", confidence=c.confidence)
            for m in mirrors for c in m.reflected_content
            if c.content_type == "screen" and c.confidence > 0.6
        ]
        hidden.extend(self._glow_screens(glow_mask, [m.bounds for m in mirrors]))

        payload = ReflectionPayload(mirrors=tuple(mirrors), hidden_screens=tuple(hidden))
        return self._signal(frame, quality["confidence"], payload)

    # ------------------------------------------------------------------
    # Mirrors
    # ------------------------------------------------------------------

    def _find_mirrors(self, bgr: np.ndarray, gray: np.ndarray, glow_mask: np.ndarray) -> List[MirrorCandidate]:
        height, width = gray.shape
        scale = self.REFERENCE_AREA / float(height * width)

        edges = cv2.Canny(cv2.GaussianBlur(gray, (5, 5), 0), 50, 150)
        contours, _ = cv2.findContours(edges, cv2.RETR_LIST, cv2.CHAIN_APPROX_SIMPLE)
        gradient = cv2.magnitude(
            cv2.Sobel(gray, cv2.CV_32F, 1, 0, ksize=3),
            cv2.Sobel(gray, cv2.CV_32F, 0, 1, ksize=3),
        )
        global_std = max(1.0, float(gray.std()))

        candidates: List[MirrorCandidate] = []
        seen: List[BoundingBox] = []
        for contour in contours:
            perimeter = cv2.arcLength(contour, True)
            approx = cv2.approxPolyDP(contour, 0.02 * perimeter, True)
            if len(approx) != 4 or not cv2.isContourConvex(approx):
                continue
            x, y, w, h = cv2.boundingRect(approx)
            area = w * h
            if area * scale < self.min_mirror_size or w < 8 or h < 8:
                continue
            if any(_overlap((x, y, w, h), other) > 0.8 for other in seen):
                continue

            region = gray[y:y + h, x:x + w]
            reflectivity = self._reflectivity(region, global_std)
            symmetry = self._symmetry(region)
            border = np.zeros_like(gray)
            cv2.drawContours(border, [approx], -1, 255, 2)
            edge_sharpness = float(np.clip(gradient[border > 0].mean() / 255.0, 0.0, 1.0))
            size_score = min(area * scale / 50000.0, 1.0)

            confidence = min(
                0.4 * min(reflectivity / 0.9, 1.0) + 0.3 * symmetry + 0.2 * size_score + 0.1 * edge_sharpness,
                0.99,
            )
            if confidence < 0.5:
                continue

            checks = [
                reflectivity >= self.reflectivity_threshold,
                symmetry >= self.symmetry_threshold,
                confidence >= 0.5,
                self._has_frame(gray, (x, y, w, h)),
                float(region.std()) > 12.0,
            ]
            if sum(checks) < 3:
                continue

            bounds = (x, y, w, h)
            seen.append(bounds)
            content = self._reflected_content(bgr[y:y + h, x:x + w], region, glow_mask[y:y + h, x:x + w])
            candidates.append(MirrorCandidate(
                bounds=bounds,
                reflectivity=reflectivity,
                symmetry=symmetry,
                edge_sharpness=edge_sharpness,
                confidence=float(confidence),
                reflected_content=tuple(content),
            ))

        candidates.sort(key=lambda m: m.confidence, reverse=True)
        return candidates[:self.max_mirrors]

    @staticmethod
    def _reflectivity(region: np.ndarray, global_std: float) -> float:
        """Brightness, specular highlights and contrast relative to the scene"""
        brightness = float(region.mean()) / 255.0
        specular = float((region >= 240).mean())
        contrast = min(1.0, float(region.std()) / global_std)
        return float(np.clip(0.5 * brightness + 0.3 * min(1.0, specular * 10.0) + 0.2 * contrast, 0.0, 1.0))

    @staticmethod
    def _symmetry(region: np.ndarray) -> float:
        half = region.shape[1] // 2
        if half == 0:
            return 0.0
        left = region[:, :half].astype(np.int16)
        right = np.fliplr(region[:, -half:]).astype(np.int16)
        return float(1.0 - np.abs(left - right).mean() / 255.0)

    @staticmethod
    def _has_frame(gray: np.ndarray, bounds: BoundingBox, ring: int = 6) -> bool:
        """Mirror frames read as a band distinct from the surface they surround"""
        x, y, w, h = bounds
        x0, y0 = max(0, x - ring), max(0, y - ring)
        x1, y1 = min(gray.shape[1], x + w + ring), min(gray.shape[0], y + h + ring)
        outer = gray[y0:y1, x0:x1].astype(np.float64)
        inner = gray[y:y + h, x:x + w].astype(np.float64)
        band_area = outer.size - inner.size
        if band_area <= 0:
            return False
        band_mean = (outer.sum() - inner.sum()) / band_area
        return abs(band_mean - inner.mean()) > 20.0

    def _reflected_content(self, bgr: np.ndarray, gray: np.ndarray, glow: np.ndarray) -> List[ReflectedContent]:
        """Classify what a mirror shows. People and objects need an object model."""
        content = []

        glow_ratio = float((glow > 0).mean()) if glow.size else 0.0
        if glow_ratio >= 0.1:
            content.append(ReflectedContent("screen", min(1.0, 0.5 + glow_ratio), CONTENT_RISK["screen"]))

        binary = cv2.adaptiveThreshold(gray, 255, cv2.ADAPTIVE_THRESH_MEAN_C, cv2.THRESH_BINARY_INV, 11, 10)
        count, _, stats, _ = cv2.connectedComponentsWithStats(binary, connectivity=8)
        glyphs = [s for s in stats[1:] if 4 <= s[cv2.CC_STAT_AREA] <= 200]
        ink = float((binary > 0).mean())
        if len(glyphs) >= 15 and 0.05 <= ink <= 0.35:
            content.append(ReflectedContent("text", min(1.0, 0.4 + len(glyphs) / 100.0), CONTENT_RISK["text"]))

        if self.object_model is not None:
            detections = self.object_model.predict(bgr)
            people = [o.confidence for o in detections if o.label.lower() == "person"]
            others = [o.confidence for o in detections if o.label.lower() != "person"]
            if people:
                content.append(ReflectedContent("person", max(people), CONTENT_RISK["person"]))
            if others:
                content.append(ReflectedContent("object", max(others), CONTENT_RISK["object"]))

        return content

    # ------------------------------------------------------------------
    # Screen glow
    # ------------------------------------------------------------------

    @staticmethod
    def _glow_mask(bgr: np.ndarray, hsv: np.ndarray) -> np.ndarray:
        """Bright bluish-white emission typical of displays"""
        b = bgr[..., 0].astype(np.int16)
        r = bgr[..., 2].astype(np.int16)
        mask = ((hsv[..., 2] >= 200) & (b >= r + 20)).astype(np.uint8) * 255
        return cv2.morphologyEx(mask, cv2.MORPH_CLOSE, np.ones((5, 5), np.uint8))

    def _glow_screens(self, glow_mask: np.ndarray, mirror_bounds: List[BoundingBox]) -> List[HiddenScreen]:
        height, width = glow_mask.shape
        scale = self.REFERENCE_AREA / float(height * width)
        count, labels, stats, _ = cv2.connectedComponentsWithStats(glow_mask, connectivity=8)

        screens = []
        for label in range(1, count):
            x, y, w, h, area = (int(v) for v in stats[label])
            if area * scale < self.min_mirror_size / 2:
                continue
            bounds = (x, y, w, h)
            if any(_overlap(bounds, m) > 0.5 for m in mirror_bounds):
                continue
            fill = area / float(w * h)
            rectangularity = min(1.0, fill)
            confidence = float(np.clip(0.4 + 0.4 * rectangularity + 0.2 * min(1.0, area * scale / 20000.0), 0.0, 1.0))
            if confidence > 0.5:
                screens.append(HiddenScreen(bounds=bounds, method="glow", confidence=confidence))
        return screens


def _overlap(a: BoundingBox, b: BoundingBox) -> float:
    """Intersection over the smaller box"""
    ax, ay, aw, ah = a
    bx, by, bw, bh = b
    ix = max(0, min(ax + aw, bx + bw) - max(ax, bx))
    iy = max(0, min(ay + ah, by + bh) - max(ay, by))
    smaller = min(aw * ah, bw * bh)
    return (ix * iy) / smaller if smaller else 0.0

