"""
Posture features from MediaPipe Pose landmarks.

Angle channels come from the metric (world) landmarks, ratio channels
from the frame-normalized landmarks:

- head_forward_angle: shoulder-midpoint -> ear-midpoint lean from vertical
- torso_angle:        hip-midpoint -> shoulder-midpoint lean from vertical
- head_tilt_angle:    ear line roll from horizontal (signed)
- shoulder_diff:      shoulder line angle from horizontal (unsigned)
- face_frame_ratio:   horizontal ear span (proximity proxy)
- face_y:             nose vertical position
- nose_to_ear_avg:    mean nose-to-ear distance / ear span

All values are finite for any 33-landmark input.
"""

import math
from dataclasses import asdict, dataclass
from typing import Dict, Sequence

from features.pose_types import Landmark, PoseLandmark
from utils.math_utils import angle_from_vertical, distance_2d, finite_or, midpoint, safe_span

ANGLE_CHANNELS = (
    'head_forward_angle',
    'torso_angle',
    'head_tilt_angle',
    'shoulder_diff',
)

FEATURE_CHANNELS = (
    'head_forward_angle',
    'torso_angle',
    'head_tilt_angle',
    'face_frame_ratio',
    'face_y',
    'nose_to_ear_avg',
    'shoulder_diff',
)


@dataclass(frozen=True)
class PostureFeatures:
    head_forward_angle: float = 0.0
    torso_angle: float = 0.0
    head_tilt_angle: float = 0.0
    face_frame_ratio: float = 0.0
    face_y: float = 0.0
    nose_to_ear_avg: float = 0.0
    shoulder_diff: float = 0.0

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, float]) -> "PostureFeatures":
        return cls(**{name: float(data.get(name, 0.0)) for name in FEATURE_CHANNELS})


# ----------------------------------------------------------------------
# Angle channels (world landmarks)
# ----------------------------------------------------------------------
def head_forward_angle(world_landmarks: Sequence[Landmark]) -> float:
    """Forward lean of the head over the shoulders, in degrees."""
    ear_mid = midpoint(world_landmarks[PoseLandmark.LEFT_EAR], world_landmarks[PoseLandmark.RIGHT_EAR])
    shoulder_mid = midpoint(world_landmarks[PoseLandmark.LEFT_SHOULDER], world_landmarks[PoseLandmark.RIGHT_SHOULDER])

    # MediaPipe world axes: y grows downward, z shrinks toward the camera.
    forward = shoulder_mid.z - ear_mid.z
    vertical = shoulder_mid.y - ear_mid.y
    return angle_from_vertical(forward, vertical)


def torso_angle(world_landmarks: Sequence[Landmark]) -> float:
    """Forward lean of the shoulders over the hips, in degrees."""
    shoulder_mid = midpoint(world_landmarks[PoseLandmark.LEFT_SHOULDER], world_landmarks[PoseLandmark.RIGHT_SHOULDER])
    hip_mid = midpoint(world_landmarks[PoseLandmark.LEFT_HIP], world_landmarks[PoseLandmark.RIGHT_HIP])

    forward = hip_mid.z - shoulder_mid.z
    vertical = hip_mid.y - shoulder_mid.y
    return angle_from_vertical(forward, vertical)


def head_tilt_angle(world_landmarks: Sequence[Landmark]) -> float:
    """
    Head roll in degrees. 0 when the ears are level; positive when the
    left ear sits lower than the right.
    """
    left_ear = world_landmarks[PoseLandmark.LEFT_EAR]
    right_ear = world_landmarks[PoseLandmark.RIGHT_EAR]

    dy = left_ear.y - right_ear.y
    # abs() keeps the result independent of mirrored input
    dx = abs(left_ear.x - right_ear.x)
    return finite_or(math.degrees(math.atan2(dy, dx)), 0.0)


def shoulder_diff(world_landmarks: Sequence[Landmark]) -> float:
    """Angular height difference between the shoulders, in degrees (>= 0)."""
    left = world_landmarks[PoseLandmark.LEFT_SHOULDER]
    right = world_landmarks[PoseLandmark.RIGHT_SHOULDER]

    dx = abs(right.x - left.x)
    dy = abs(left.y - right.y)
    return finite_or(math.degrees(math.atan2(dy, dx)), 0.0)


# ----------------------------------------------------------------------
# Ratio channels (frame-normalized landmarks)
# ----------------------------------------------------------------------
def ear_span(landmarks: Sequence[Landmark]) -> float:
    return abs(landmarks[PoseLandmark.LEFT_EAR].x - landmarks[PoseLandmark.RIGHT_EAR].x)


def face_frame_ratio(landmarks: Sequence[Landmark]) -> float:
    # x is already normalized to frame width
    return finite_or(ear_span(landmarks), 0.0)


def face_y(landmarks: Sequence[Landmark]) -> float:
    return finite_or(landmarks[PoseLandmark.NOSE].y, 0.0)


def nose_to_ear_avg(landmarks: Sequence[Landmark]) -> float:
    """Mean nose-to-ear distance over ear span; invariant to camera distance."""
    nose = landmarks[PoseLandmark.NOSE]
    to_left = distance_2d(nose, landmarks[PoseLandmark.LEFT_EAR])
    to_right = distance_2d(nose, landmarks[PoseLandmark.RIGHT_EAR])
    return finite_or(((to_left + to_right) / 2.0) / safe_span(ear_span(landmarks)), 0.0)


def extract_posture_features(world_landmarks: Sequence[Landmark],
                             landmarks: Sequence[Landmark]) -> PostureFeatures:
    """
    Convert one landmark snapshot into the seven posture channels.

    Args:
        world_landmarks: 33 metric landmarks (angle geometry)
        landmarks: 33 frame-normalized landmarks (ratios)

    Returns:
        PostureFeatures with every channel finite
    """
    return PostureFeatures(
        head_forward_angle=head_forward_angle(world_landmarks),
        torso_angle=torso_angle(world_landmarks),
        head_tilt_angle=head_tilt_angle(world_landmarks),
        face_frame_ratio=face_frame_ratio(landmarks),
        face_y=face_y(landmarks),
        nose_to_ear_avg=nose_to_ear_avg(landmarks),
        shoulder_diff=shoulder_diff(world_landmarks),
    )
