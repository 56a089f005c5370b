"""
Screen / camera tilt compensation.

When the laptop lid (and with it the webcam) is tilted after calibration,
the whole face shifts in frame and the apparent head-forward angle changes
even though the user has not moved. Three distance-invariant face ratios
track that viewing-angle change; a fixed linear model turns their deltas
into an estimated pitch change, and head_forward_angle is corrected by it.

The linear model is accurate near the calibration angle and degrades
gradually for large tilts. Multi-angle calibration (one reference per
screen angle, nearest reference wins) covers the wider range.
"""

from dataclasses import dataclass, replace
from typing import Optional, Sequence

import numpy as np

from features.pose_types import Landmark, PoseLandmark
from features.posture_features import PostureFeatures, ear_span
from utils.math_utils import finite_or, nearest_index, safe_span

# Degrees of pitch per unit of signal delta
FACE_Y_SCALE = 45.0
NOSE_CHIN_SCALE = 30.0
EYE_MOUTH_SCALE = 20.0

HEAD_FORWARD_COMPENSATION = 0.8


@dataclass(frozen=True)
class ScreenAngleSignals:
    face_y: float
    nose_chin_ratio: float
    eye_mouth_ratio: float

    def as_array(self) -> np.ndarray:
        return np.array([self.face_y, self.nose_chin_ratio, self.eye_mouth_ratio], dtype=np.float64)

    def as_dict(self) -> dict:
        return {
            'face_y': self.face_y,
            'nose_chin_ratio': self.nose_chin_ratio,
            'eye_mouth_ratio': self.eye_mouth_ratio,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ScreenAngleSignals":
        return cls(
            face_y=float(data['face_y']),
            nose_chin_ratio=float(data['nose_chin_ratio']),
            eye_mouth_ratio=float(data['eye_mouth_ratio']),
        )


@dataclass(frozen=True)
class ScreenAngleReference:
    """Signals captured at a known screen angle (degrees) during calibration."""
    angle: float
    signals: ScreenAngleSignals

    def as_dict(self) -> dict:
        return {'angle': self.angle, 'signals': self.signals.as_dict()}

    @classmethod
    def from_dict(cls, data: dict) -> "ScreenAngleReference":
        return cls(angle=float(data.get('angle', 0.0)), signals=ScreenAngleSignals.from_dict(data['signals']))


def extract_screen_angle_signals(landmarks: Sequence[Landmark]) -> ScreenAngleSignals:
    """
    Viewing-angle signals from frame-normalized landmarks.

    nose_chin_ratio and eye_mouth_ratio are vertical distances to the mouth
    midpoint divided by ear span, so they do not change with camera distance.
    """
    nose = landmarks[PoseLandmark.NOSE]
    mouth_mid_y = (landmarks[PoseLandmark.MOUTH_LEFT].y + landmarks[PoseLandmark.MOUTH_RIGHT].y) / 2.0
    eye_mid_y = (landmarks[PoseLandmark.LEFT_EYE].y + landmarks[PoseLandmark.RIGHT_EYE].y) / 2.0
    span = safe_span(ear_span(landmarks))

    return ScreenAngleSignals(
        face_y=finite_or(nose.y, 0.0),
        nose_chin_ratio=finite_or((mouth_mid_y - nose.y) / span, 0.0),
        eye_mouth_ratio=finite_or((mouth_mid_y - eye_mid_y) / span, 0.0),
    )


def as_reference(signals: ScreenAngleSignals, angle: float = 0.0) -> ScreenAngleReference:
    """Snapshot the current signals as the calibration-time reference."""
    return ScreenAngleReference(angle=float(angle), signals=signals)


def estimate_angle_change(current: ScreenAngleSignals, reference) -> float:
    """
    Estimated pitch change (degrees) since the reference was taken.

    Args:
        current: signals of the frame being analyzed
        reference: ScreenAngleReference or bare ScreenAngleSignals
    """
    ref = reference.signals if isinstance(reference, ScreenAngleReference) else reference
    delta = (
        (current.face_y - ref.face_y) * FACE_Y_SCALE
        + (current.nose_chin_ratio - ref.nose_chin_ratio) * NOSE_CHIN_SCALE
        + (current.eye_mouth_ratio - ref.eye_mouth_ratio) * EYE_MOUTH_SCALE
    )
    return finite_or(delta, 0.0)


def nearest_reference(current: ScreenAngleSignals,
                      references: Sequence[ScreenAngleReference]) -> Optional[ScreenAngleReference]:
    if not references:
        return None
    candidates = np.vstack([ref.signals.as_array() for ref in references])
    idx = nearest_index(current.as_array(), candidates)
    return references[idx]


def estimate_angle_change_multi(current: ScreenAngleSignals,
                                references: Sequence[ScreenAngleReference]) -> float:
    """Pitch change relative to the closest calibrated screen angle; 0 without references."""
    ref = nearest_reference(current, references)
    if ref is None:
        return 0.0
    return estimate_angle_change(current, ref)


def compensate(features: PostureFeatures, pitch_delta: float) -> PostureFeatures:
    """Correct head_forward_angle for a pitch change; other channels pass through."""
    return replace(
        features,
        head_forward_angle=features.head_forward_angle - pitch_delta * HEAD_FORWARD_COMPENSATION,
    )
