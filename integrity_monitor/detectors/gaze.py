"""
Gaze Detector - Head pose and calibrated on-screen gaze

Head pose comes from solvePnP over six landmarks; gaze from the iris
position inside each eye, mapped to the screen with the candidate's
calibration profile.
"""

import math
import logging
from typing import Optional, Tuple

import cv2
import numpy as np

from ..calibration import CalibrationProfile
from ..types import Frame, GazePayload, Signal, SignalKind
from ..utils.frame_quality import check_frame_quality
from .base import DetectorPlugin, LandmarkProvider
from .face import primary_face

logger = logging.getLogger(__name__)


class HeadPoseEstimator:
    """
    Estimates head pose (pitch, yaw, roll) using 68-point facial landmarks
    and PnP (Perspective-n-Point) algorithm.

    Uses 6 key facial points:
    - Nose tip (30)
    - Chin (8)
    - Left eye corner (36)
    - Right eye corner (45)
    - Left mouth corner (48)
    - Right mouth corner (54)
    """

    # 3D model points (generic face model)
    MODEL_POINTS = np.array([
        (0.0, 0.0, 0.0),            # Nose tip
        (0.0, -330.0, -65.0),       # Chin
        (-225.0, 170.0, -135.0),    # Left eye left corner
        (225.0, 170.0, -135.0),     # Right eye right corner
        (-150.0, -150.0, -125.0),   # Left mouth corner
        (150.0, -150.0, -125.0)     # Right mouth corner
    ], dtype=np.float64)

    LANDMARK_INDICES = [30, 8, 36, 45, 48, 54]

    def __init__(self, frame_size: Tuple[int, int] = (480, 640)):
        """
        Args:
            frame_size: (height, width) of expected frames
        """
        self.frame_size = frame_size
        self._init_camera_matrix(frame_size)

    def _init_camera_matrix(self, frame_size: Tuple[int, int]):
        height, width = frame_size
        focal_length = width
        center = (width / 2, height / 2)

        self.camera_matrix = np.array([
            [focal_length, 0, center[0]],
            [0, focal_length, center[1]],
            [0, 0, 1]
        ], dtype=np.float64)

        self.dist_coeffs = np.zeros((4, 1))

    def estimate(self, landmarks: np.ndarray, frame_size: Tuple[int, int]) -> Optional[Tuple[float, float, float]]:
        """
        Estimate head pose from facial landmarks.

        Args:
            landmarks: (68, 2) landmark array
            frame_size: (height, width) of the frame

        Returns:
            (pitch, yaw, roll) in degrees, or None if PnP fails
        """
        if landmarks is None or len(landmarks) < 68:
            return None

        if frame_size != self.frame_size:
            self._init_camera_matrix(frame_size)
            self.frame_size = frame_size

        image_points = np.asarray(landmarks, dtype=np.float64)[self.LANDMARK_INDICES]
        success, rotation_vector, _ = cv2.solvePnP(
            self.MODEL_POINTS,
            image_points,
            self.camera_matrix,
            self.dist_coeffs,
            flags=cv2.SOLVEPNP_ITERATIVE
        )
        if not success:
            return None

        rotation_matrix, _ = cv2.Rodrigues(rotation_vector)
        return self._rotation_matrix_to_euler(rotation_matrix)

    @staticmethod
    def _rotation_matrix_to_euler(rotation_matrix: np.ndarray) -> Tuple[float, float, float]:
        """Rotation matrix to (pitch, yaw, roll) in degrees, pitch folded into [-90, 90]"""
        sy = math.sqrt(rotation_matrix[0, 0] ** 2 + rotation_matrix[1, 0] ** 2)

        if sy >= 1e-6:
            pitch = math.atan2(rotation_matrix[2, 1], rotation_matrix[2, 2])
            yaw = math.atan2(-rotation_matrix[2, 0], sy)
            roll = math.atan2(rotation_matrix[1, 0], rotation_matrix[0, 0])
        else:
            pitch = math.atan2(-rotation_matrix[1, 2], rotation_matrix[1, 1])
            yaw = math.atan2(-rotation_matrix[2, 0], sy)
            roll = 0.0

        pitch = math.degrees(pitch)
        # the generic model faces -z, so a frontal face solves to ~180
        if pitch > 90:
            pitch -= 180
        elif pitch < -90:
            pitch += 180
        return pitch, math.degrees(yaw), math.degrees(roll)


class GazeDetector(DetectorPlugin):
    """
    Calibrated gaze and head pose for the primary face.

    The raw eye feature is the iris position within each eye's landmark
    box (0..1 on both axes), averaged over both eyes, and projected to
    normalized screen coordinates by the calibration homography.
    """

    kind = SignalKind.GAZE

    LEFT_EYE_INDICES = [36, 37, 38, 39, 40, 41]
    RIGHT_EYE_INDICES = [42, 43, 44, 45, 46, 47]

    # Confidence multiplier when only head pose could be measured
    HEAD_ONLY_FACTOR = 0.6

    def __init__(self, provider: LandmarkProvider, calibration: CalibrationProfile, name: Optional[str] = None):
        super().__init__(name)
        self.provider = provider
        self.calibration = calibration
        self.head_pose = HeadPoseEstimator()

    def analyze(self, frame: Frame, prior_state: Optional[Signal] = None) -> Signal:
        bgr = frame.to_bgr()
        face = primary_face(self.provider.detect(bgr))
        if face is None or face.landmarks is None:
            return self._no_evidence(frame, "no face")

        pose = self.head_pose.estimate(face.landmarks, (frame.height, frame.width))
        if pose is None:
            return self._no_evidence(frame, "head pose unavailable")
        pitch, yaw, roll = pose

        quality = check_frame_quality(frame)
        confidence = face.confidence * quality["confidence"]
        head_excess = self.calibration.head_pose_bounds.excess(yaw, pitch)

        feature = self._eye_feature(cv2.cvtColor(bgr, cv2.COLOR_BGR2GRAY), face.landmarks, face.iris_centers)
        if feature is None:
            payload = GazePayload(
                gaze_yaw=yaw, gaze_pitch=pitch,
                head_yaw=yaw, head_pitch=pitch, head_roll=roll,
                head_pose_excess_deg=head_excess,
            )
            return self._signal(frame, confidence * self.HEAD_ONLY_FACTOR, payload)

        screen_x, screen_y = self.calibration.map_gaze(*feature)
        gaze_yaw, gaze_pitch = self.calibration.screen_to_angles(screen_x, screen_y)
        deviation = self.calibration.off_screen_deviation(screen_x, screen_y)

        payload = GazePayload(
            gaze_yaw=gaze_yaw,
            gaze_pitch=gaze_pitch,
            head_yaw=yaw,
            head_pitch=pitch,
            head_roll=roll,
            screen_point=(screen_x, screen_y),
            on_screen=deviation == 0.0,
            deviation_deg=deviation,
            head_pose_excess_deg=head_excess,
        )
        return self._signal(frame, confidence, payload)

    def _eye_feature(self, gray: np.ndarray, landmarks: np.ndarray,
                     iris_centers: Optional[np.ndarray]) -> Optional[Tuple[float, float]]:
        ratios = []
        for i, indices in enumerate((self.LEFT_EYE_INDICES, self.RIGHT_EYE_INDICES)):
            eye = np.asarray(landmarks, dtype=np.float64)[indices]
            if iris_centers is not None:
                center = np.asarray(iris_centers[i], dtype=np.float64)
            else:
                center = self._dark_centroid(gray, eye)
            if center is None:
                continue
            x_min, y_min = eye.min(axis=0)
            x_max, y_max = eye.max(axis=0)
            if x_max - x_min < 2 or y_max - y_min < 1:
                continue
            ratios.append(((center[0] - x_min) / (x_max - x_min), (center[1] - y_min) / (y_max - y_min)))

        if not ratios:
            return None
        rx, ry = np.clip(np.mean(ratios, axis=0), -0.5, 1.5)
        return float(rx), float(ry)

    @staticmethod
    def _dark_centroid(gray: np.ndarray, eye: np.ndarray) -> Optional[np.ndarray]:
        """Centroid of the darkest quarter of pixels inside the eye polygon"""
        mask = np.zeros(gray.shape, dtype=np.uint8)
        cv2.fillPoly(mask, [eye.astype(np.int32)], 255)
        ys, xs = np.nonzero(mask)
        if xs.size < 6:
            return None
        values = gray[ys, xs]
        dark = values <= np.percentile(values, 25)
        return np.array([xs[dark].mean(), ys[dark].mean()])
