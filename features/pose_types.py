"""
Shared pose data types: landmarks, snapshots, landmark indices and the
engine's error hierarchy.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Sequence, Tuple

TOTAL_LANDMARKS = 33


class PostureEngineError(Exception):
    """Base class for errors raised by the posture engine."""


class ConfigurationError(PostureEngineError, ValueError):
    """Invalid parameters supplied at construction time."""


class OperationError(PostureEngineError, RuntimeError):
    """An operation was invoked in a state that cannot satisfy it."""


class DetectorInitError(PostureEngineError, RuntimeError):
    """The pose detector could not be initialised."""


class PoseLandmark(IntEnum):
    """MediaPipe Pose landmark indices (33-point topology)."""
    NOSE = 0
    LEFT_EYE_INNER = 1
    LEFT_EYE = 2
    LEFT_EYE_OUTER = 3
    RIGHT_EYE_INNER = 4
    RIGHT_EYE = 5
    RIGHT_EYE_OUTER = 6
    LEFT_EAR = 7
    RIGHT_EAR = 8
    MOUTH_LEFT = 9
    MOUTH_RIGHT = 10
    LEFT_SHOULDER = 11
    RIGHT_SHOULDER = 12
    LEFT_ELBOW = 13
    RIGHT_ELBOW = 14
    LEFT_WRIST = 15
    RIGHT_WRIST = 16
    LEFT_PINKY = 17
    RIGHT_PINKY = 18
    LEFT_INDEX = 19
    RIGHT_INDEX = 20
    LEFT_THUMB = 21
    RIGHT_THUMB = 22
    LEFT_HIP = 23
    RIGHT_HIP = 24
    LEFT_KNEE = 25
    RIGHT_KNEE = 26
    LEFT_ANKLE = 27
    RIGHT_ANKLE = 28
    LEFT_HEEL = 29
    RIGHT_HEEL = 30
    LEFT_FOOT_INDEX = 31
    RIGHT_FOOT_INDEX = 32


# Ears + shoulders drive every default-enabled rule. Hips are left out:
# they are rarely in frame for a desk webcam.
CRITICAL_LANDMARKS: Tuple[PoseLandmark, ...] = (
    PoseLandmark.LEFT_EAR,
    PoseLandmark.RIGHT_EAR,
    PoseLandmark.LEFT_SHOULDER,
    PoseLandmark.RIGHT_SHOULDER,
)


@dataclass(frozen=True)
class Landmark:
    x: float
    y: float
    z: float = 0.0
    visibility: float = 1.0

    @classmethod
    def from_dict(cls, data: dict) -> "Landmark":
        return cls(
            x=float(data.get('x', 0.0)),
            y=float(data.get('y', 0.0)),
            z=float(data.get('z', 0.0)),
            visibility=float(data.get('visibility', 1.0)),
        )

    def to_dict(self) -> dict:
        return {'x': self.x, 'y': self.y, 'z': self.z, 'visibility': self.visibility}


@dataclass(frozen=True)
class Snapshot:
    """
    One pose-detector output.

    landmarks are frame-normalized (x, y in [0, 1]); world_landmarks are
    metric, hip-centred and depth-aware. Both share PoseLandmark indexing.
    timestamp is in milliseconds.
    """
    landmarks: Tuple[Landmark, ...]
    world_landmarks: Tuple[Landmark, ...]
    timestamp: float
    frame_width: int = 0
    frame_height: int = 0

    @classmethod
    def build(cls, landmarks: Sequence, world_landmarks: Sequence, timestamp: float,
              frame_width: int = 0, frame_height: int = 0) -> "Snapshot":
        """
        Build a snapshot from Landmark objects or plain dicts.

        Raises:
            ConfigurationError: if either array does not hold 33 landmarks.
        """
        if len(landmarks) != TOTAL_LANDMARKS or len(world_landmarks) != TOTAL_LANDMARKS:
            raise ConfigurationError(
                f"snapshot requires {TOTAL_LANDMARKS} landmarks per array, "
                f"got {len(landmarks)} and {len(world_landmarks)}"
            )
        return cls(
            landmarks=tuple(_as_landmark(lm) for lm in landmarks),
            world_landmarks=tuple(_as_landmark(lm) for lm in world_landmarks),
            timestamp=float(timestamp),
            frame_width=int(frame_width),
            frame_height=int(frame_height),
        )


def _as_landmark(value) -> Landmark:
    if isinstance(value, Landmark):
        return value
    if isinstance(value, dict):
        return Landmark.from_dict(value)
    return Landmark(
        x=float(value.x),
        y=float(value.y),
        z=float(getattr(value, 'z', 0.0)),
        visibility=float(getattr(value, 'visibility', 1.0)),
    )
