"""
Temporal smoothing for per-frame posture channels.

Two single-channel filters are chained per channel (EMA, then jitter hold)
so a single noisy frame is damped while a sustained change still comes
through within a few frames.
"""

from typing import Dict, Optional

from features.pose_types import ConfigurationError
from features.posture_features import FEATURE_CHANNELS, PostureFeatures
from utils.math_utils import is_finite

DEFAULT_EMA_ALPHA = 0.3

DEFAULT_JITTER_THRESHOLDS = {
    'head_forward_angle': 1.0,
    'torso_angle': 1.0,
    'head_tilt_angle': 1.0,
    'face_frame_ratio': 0.02,
    'face_y': 0.02,
    'nose_to_ear_avg': 0.005,
    'shoulder_diff': 1.0,
}


class EMAFilter:
    """Exponential moving average: alpha * x + (1 - alpha) * previous."""

    def __init__(self, alpha: float = DEFAULT_EMA_ALPHA):
        if not is_finite(alpha) or not 0.0 < alpha <= 1.0:
            raise ConfigurationError(f"alpha must be in (0, 1], got {alpha}")
        self.alpha = float(alpha)
        self._value: Optional[float] = None

    def update(self, value: float) -> float:
        # First sample passes through untouched (no warm-up bias toward 0)
        if self._value is None:
            self._value = float(value)
        else:
            self._value = self.alpha * value + (1.0 - self.alpha) * self._value
        return self._value

    def reset(self):
        self._value = None

    @property
    def value(self) -> Optional[float]:
        return self._value


class JitterFilter:
    """Holds the previous output until the input moves by at least `threshold`."""

    def __init__(self, threshold: float):
        if not is_finite(threshold) or threshold < 0:
            raise ConfigurationError(f"threshold must be a non-negative number, got {threshold}")
        self.threshold = float(threshold)
        self._value: Optional[float] = None

    def update(self, value: float) -> float:
        if self._value is None or abs(value - self._value) >= self.threshold:
            self._value = float(value)
        return self._value

    def reset(self):
        self._value = None

    @property
    def value(self) -> Optional[float]:
        return self._value


class FilterBank:
    """One EMA -> jitter chain per posture channel."""

    def __init__(self, alpha: float = DEFAULT_EMA_ALPHA,
                 jitter_thresholds: Optional[Dict[str, float]] = None):
        thresholds = dict(DEFAULT_JITTER_THRESHOLDS)
        if jitter_thresholds:
            unknown = set(jitter_thresholds) - set(FEATURE_CHANNELS)
            if unknown:
                raise ConfigurationError(f"unknown smoothing channels: {sorted(unknown)}")
            thresholds.update(jitter_thresholds)

        self._ema = {name: EMAFilter(alpha) for name in FEATURE_CHANNELS}
        self.alpha = float(alpha)
        self._jitter = {name: JitterFilter(thresholds[name]) for name in FEATURE_CHANNELS}

    def smooth(self, features: PostureFeatures) -> PostureFeatures:
        raw = features.as_dict()
        smoothed = {
            name: self._jitter[name].update(self._ema[name].update(raw[name]))
            for name in FEATURE_CHANNELS
        }
        return PostureFeatures(**smoothed)

    def reset(self):
        for name in FEATURE_CHANNELS:
            self._ema[name].reset()
            self._jitter[name].reset()

    def state(self) -> Dict[str, tuple]:
        """Current (ema, jitter) memory per channel; None means empty."""
        return {name: (self._ema[name].value, self._jitter[name].value) for name in FEATURE_CHANNELS}
