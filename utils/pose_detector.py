"""
Pose detector: MediaPipe Pose wrapper that turns BGR frames into Snapshots.

The posture engine itself never touches the camera or the inference runtime;
this is the only module that does.
"""

import logging
from typing import Optional

import cv2
import numpy as np

from features.pose_types import DetectorInitError, Snapshot, TOTAL_LANDMARKS

logger = logging.getLogger(__name__)


def _load_pose_solution():
    # mediapipe ships as the optional "detector" extra
    import mediapipe as mp
    return mp.solutions.pose


class PoseDetector:
    """Single-person pose detector for desk-webcam video."""

    def __init__(self, model_complexity: int = 1,
                 min_detection_confidence: float = 0.5,
                 min_tracking_confidence: float = 0.5):
        self.model_complexity = model_complexity
        self.min_detection_confidence = min_detection_confidence
        self.min_tracking_confidence = min_tracking_confidence
        self._pose = None

    def initialize(self):
        """
        Load the MediaPipe Pose model.

        Raises:
            DetectorInitError: if mediapipe is missing or the model fails to load.
        """
        if self._pose is not None:
            return
        try:
            mp_pose = _load_pose_solution()
            self._pose = mp_pose.Pose(
                static_image_mode=False,
                model_complexity=self.model_complexity,
                smooth_landmarks=True,
                enable_segmentation=False,
                min_detection_confidence=self.min_detection_confidence,
                min_tracking_confidence=self.min_tracking_confidence,
            )
        except Exception as e:
            raise DetectorInitError(f"failed to initialise pose detector: {e}") from e
        logger.info("Pose detector initialised (model_complexity=%d)", self.model_complexity)

    def is_ready(self) -> bool:
        return self._pose is not None

    def detect(self, frame: np.ndarray, timestamp_ms: float) -> Optional[Snapshot]:
        """
        Run pose inference on one frame.

        Args:
            frame: BGR numpy array from cv2.VideoCapture
            timestamp_ms: capture time in milliseconds

        Returns:
            Snapshot, or None when no pose was found or inference failed.
        """
        if self._pose is None:
            logger.warning("detect() called before initialize()")
            return None
        if frame is None:
            return None

        h, w = frame.shape[:2]
        try:
            image = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
            image.flags.writeable = False
            results = self._pose.process(image)
        except Exception as e:
            logger.warning(f"Pose inference failed: {e}")
            return None

        if not results.pose_landmarks or not results.pose_world_landmarks:
            return None

        landmarks = list(results.pose_landmarks.landmark)
        world_landmarks = list(results.pose_world_landmarks.landmark)
        if len(landmarks) != TOTAL_LANDMARKS or len(world_landmarks) != TOTAL_LANDMARKS:
            logger.warning(f"Unexpected landmark count: {len(landmarks)}/{len(world_landmarks)}")
            return None

        return Snapshot.build(
            landmarks=landmarks,
            world_landmarks=world_landmarks,
            timestamp=timestamp_ms,
            frame_width=w,
            frame_height=h,
        )

    def destroy(self):
        if self._pose is None:
            return
        self._pose.close()
        self._pose = None
        logger.info("Pose detector destroyed")
