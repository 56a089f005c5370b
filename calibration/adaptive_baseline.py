"""
Adaptive baseline.

After 30 s of continuous good posture the operating baseline starts to
creep toward the live readings (users relax a little over a long session).
The cumulative drift per channel is hard-capped relative to the calibrated
baseline, so no amount of time or input can make an arbitrary posture
"good".
"""

import logging
import math
from typing import Dict

from features.posture_features import ANGLE_CHANNELS, FEATURE_CHANNELS, PostureFeatures
from utils.math_utils import clamp, finite_or

logger = logging.getLogger(__name__)

WARMUP_SECONDS = 30.0
LEARNING_RATE = 0.001  # fraction of the gap closed per second

ANGLE_DRIFT_CAP = 8.0
RATIO_DRIFT_CAP = 0.1

DRIFT_CAPS: Dict[str, float] = {
    name: (ANGLE_DRIFT_CAP if name in ANGLE_CHANNELS else RATIO_DRIFT_CAP)
    for name in FEATURE_CHANNELS
}


class AdaptiveBaseline:
    def __init__(self, original: PostureFeatures,
                 warmup_seconds: float = WARMUP_SECONDS,
                 learning_rate: float = LEARNING_RATE):
        self.original_baseline = original
        self.warmup_seconds = warmup_seconds
        self.learning_rate = learning_rate

        # Drift is stored as an offset from the original so the cap is exact
        self._offset = {name: 0.0 for name in FEATURE_CHANNELS}
        self.good_posture_duration = 0.0

    @property
    def current_baseline(self) -> PostureFeatures:
        original = self.original_baseline.as_dict()
        return PostureFeatures(**{name: original[name] + self._offset[name] for name in FEATURE_CHANNELS})

    def update(self, is_good: bool, raw_features: PostureFeatures, delta_seconds: float) -> PostureFeatures:
        """
        Feed one analysis cycle.

        Bad posture only interrupts accumulation; drift already applied is
        kept.

        Args:
            is_good: whether the cycle produced no violations
            raw_features: unsmoothed features of the cycle
            delta_seconds: time since the previous cycle

        Returns:
            The current baseline after the update
        """
        if not is_good:
            self.good_posture_duration = 0.0
            return self.current_baseline

        dt = max(0.0, finite_or(delta_seconds, 0.0))
        previous = self.good_posture_duration
        self.good_posture_duration = previous + dt

        if self.good_posture_duration <= self.warmup_seconds:
            return self.current_baseline

        # Only the part of dt past the warm-up counts toward drift
        if previous >= self.warmup_seconds:
            drift_time = dt
        else:
            drift_time = self.good_posture_duration - self.warmup_seconds
            logger.debug("Good posture held for %.1fs, baseline drift enabled", self.good_posture_duration)

        self._apply_drift(raw_features, drift_time)
        return self.current_baseline

    def _apply_drift(self, raw_features: PostureFeatures, drift_time: float):
        # Step never overshoots the target, even for huge drift_time
        step = min(1.0, self.learning_rate * drift_time)
        original = self.original_baseline.as_dict()
        targets = raw_features.as_dict()

        for name in FEATURE_CHANNELS:
            target_offset = targets[name] - original[name]
            if math.isnan(target_offset):
                continue
            offset = self._offset[name]
            moved = offset + (target_offset - offset) * step
            if math.isnan(moved):
                # inf target: jump straight to the cap on that side
                moved = target_offset
            cap = DRIFT_CAPS[name]
            self._offset[name] = clamp(moved, -cap, cap)

    def drift(self) -> Dict[str, float]:
        """Current offset from the calibrated baseline, per channel."""
        return dict(self._offset)

    def reset(self):
        self._offset = {name: 0.0 for name in FEATURE_CHANNELS}
        self.good_posture_duration = 0.0
