"""
Posture analyzer: per-snapshot classification pipeline.

snapshot -> features -> screen-angle compensation -> smoothing
         -> deviation from adaptive baseline -> scaled thresholds -> rules

The raw (unsmoothed) features and the rule outcome feed the adaptive
baseline for the next cycle. Frames where the ears/shoulders are mostly
invisible are reported as "good, no new information" and leave all
internal state untouched.

One instance per user session; instances share nothing, but a single
instance is not safe for concurrent calls.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from calibration.adaptive_baseline import AdaptiveBaseline
from calibration.calibration_session import CalibrationBaseline
from features.pose_types import CRITICAL_LANDMARKS, Landmark, Snapshot
from features.posture_features import PostureFeatures, extract_posture_features
from features.posture_rules import (
    AngleDeviations,
    CustomThresholds,
    RuleToggles,
    Violation,
    compute_deviations,
    evaluate_rules,
    forward_head_components,
    forward_head_score,
    scale_thresholds,
)
from features.screen_angle import (
    ScreenAngleReference,
    compensate,
    estimate_angle_change,
    estimate_angle_change_multi,
    extract_screen_angle_signals,
)
from features.temporal_smoothing import DEFAULT_EMA_ALPHA, FilterBank
from utils.math_utils import clamp01, finite_or

logger = logging.getLogger(__name__)

LOW_VISIBILITY = 0.5
# Longest frame interval credited to the adaptive baseline, in seconds
MAX_FRAME_GAP_SECONDS = 5.0
# Discard a frame when this many critical landmarks are below LOW_VISIBILITY
MIN_LOW_VISIBILITY_TO_DISCARD = 3


@dataclass(frozen=True)
class ClassificationResult:
    is_good: bool
    violations: Tuple[Violation, ...]
    confidence: float
    timestamp: float

    def as_dict(self) -> dict:
        return {
            'is_good': self.is_good,
            'violations': [v.as_dict() for v in self.violations],
            'confidence': self.confidence,
            'timestamp': self.timestamp,
        }


@dataclass(frozen=True)
class DetailedResult:
    """Classification plus intermediates; features/deviations are None for discarded frames."""
    status: ClassificationResult
    features: Optional[PostureFeatures] = None
    raw_features: Optional[PostureFeatures] = None
    deviations: Optional[AngleDeviations] = None
    pitch_delta: float = 0.0

    def as_dict(self) -> dict:
        return {
            'status': self.status.as_dict(),
            'features': self.features.as_dict() if self.features else None,
            'raw_features': self.raw_features.as_dict() if self.raw_features else None,
            'deviations': self.deviations.as_dict() if self.deviations else None,
            'pitch_delta': self.pitch_delta,
        }


def compute_confidence(world_landmarks: Sequence[Landmark]) -> float:
    """Mean visibility of the critical landmarks, always in [0, 1]."""
    total = sum(clamp01(world_landmarks[idx].visibility) for idx in CRITICAL_LANDMARKS)
    return clamp01(total / len(CRITICAL_LANDMARKS))


def has_low_visibility(world_landmarks: Sequence[Landmark]) -> bool:
    # NaN visibility counts as low
    low = sum(1 for idx in CRITICAL_LANDMARKS if not world_landmarks[idx].visibility >= LOW_VISIBILITY)
    return low >= MIN_LOW_VISIBILITY_TO_DISCARD


class PostureAnalyzer:
    """Classifies posture snapshots against a calibrated, slowly adapting baseline."""

    def __init__(
        self,
        baseline: CalibrationBaseline,
        sensitivity: float = 0.5,
        rule_toggles: Optional[RuleToggles] = None,
        screen_angle_reference: Optional[ScreenAngleReference] = None,
        screen_angle_references: Optional[Sequence[ScreenAngleReference]] = None,
        custom_thresholds: Optional[CustomThresholds] = None,
        ema_alpha: float = DEFAULT_EMA_ALPHA,
        jitter_thresholds: Optional[dict] = None,
        debug_mode: bool = False,
    ):
        """
        Args:
            baseline: calibration result to judge against
            sensitivity: 0 (lenient) .. 1 (strict)
            rule_toggles: enabled rules; defaults to RuleToggles()
            screen_angle_reference: single reference for tilt compensation
            screen_angle_references: multi-angle references; default taken
                from the baseline and preferred over the single reference
            custom_thresholds: per-rule centre-threshold overrides
            ema_alpha, jitter_thresholds: smoothing parameters

        Raises:
            ConfigurationError: on invalid smoothing parameters or custom
                thresholds.
        """
        if custom_thresholds is not None:
            scale_thresholds(sensitivity, custom_thresholds)
        self.filters = FilterBank(alpha=ema_alpha, jitter_thresholds=jitter_thresholds)
        self.baseline = baseline
        self.adaptive_baseline = AdaptiveBaseline(baseline.features)
        self.sensitivity = sensitivity
        self.rule_toggles = rule_toggles if rule_toggles is not None else RuleToggles()
        self.custom_thresholds = custom_thresholds
        self.screen_angle_reference = screen_angle_reference
        if screen_angle_references is None:
            screen_angle_references = baseline.screen_angle_references
        self.screen_angle_references: Tuple[ScreenAngleReference, ...] = tuple(screen_angle_references)
        self.debug_mode = debug_mode

        self._last_timestamp: Optional[float] = None
        logger.info(
            "PostureAnalyzer ready (sensitivity=%.2f, alpha=%.2f, %d screen-angle references)",
            sensitivity, self.filters.alpha, len(self.screen_angle_references),
        )

    # ------------------------------------------------------------------
    # Per-frame analysis
    # ------------------------------------------------------------------
    def analyze(self, snapshot: Snapshot) -> ClassificationResult:
        return self.analyze_detailed(snapshot).status

    def analyze_detailed(self, snapshot: Snapshot) -> DetailedResult:
        confidence = compute_confidence(snapshot.world_landmarks)

        if has_low_visibility(snapshot.world_landmarks):
            logger.debug("Discarding low-visibility frame at %s (confidence %.2f)", snapshot.timestamp, confidence)
            return DetailedResult(
                status=ClassificationResult(
                    is_good=True,
                    violations=(),
                    confidence=confidence,
                    timestamp=snapshot.timestamp,
                ),
            )

        features = extract_posture_features(snapshot.world_landmarks, snapshot.landmarks)
        pitch_delta = self._pitch_delta(snapshot)
        if pitch_delta != 0.0:
            features = compensate(features, pitch_delta)

        smoothed = self.filters.smooth(features)
        deviations = compute_deviations(smoothed, self.adaptive_baseline.current_baseline)
        thresholds = scale_thresholds(self.sensitivity, self.custom_thresholds)
        violations = evaluate_rules(deviations, thresholds, self.rule_toggles)
        is_good = not violations

        if self.debug_mode:
            parts = forward_head_components(deviations, thresholds)
            logger.debug(
                "nte=%.4f d=%.4f | ffr=%.4f d=%.4f | angle=%.1f d=%.1f | FH=%.2f (nte=%.2f ffr=%.2f angle=%.2f) | pitch=%.1f | %s",
                smoothed.nose_to_ear_avg, deviations.nose_to_ear_avg,
                smoothed.face_frame_ratio, deviations.face_frame_ratio,
                smoothed.head_forward_angle, deviations.head_forward,
                forward_head_score(deviations, thresholds), parts['nte'], parts['ffr'], parts['angle'],
                pitch_delta, [v.rule.value for v in violations],
            )

        self.adaptive_baseline.update(is_good, features, self._delta_seconds(snapshot.timestamp))

        return DetailedResult(
            status=ClassificationResult(
                is_good=is_good,
                violations=tuple(violations),
                confidence=confidence,
                timestamp=snapshot.timestamp,
            ),
            features=smoothed,
            raw_features=features,
            deviations=deviations,
            pitch_delta=pitch_delta,
        )

    def _pitch_delta(self, snapshot: Snapshot) -> float:
        if not self.screen_angle_references and self.screen_angle_reference is None:
            return 0.0
        signals = extract_screen_angle_signals(snapshot.landmarks)
        if self.screen_angle_references:
            return estimate_angle_change_multi(signals, self.screen_angle_references)
        return estimate_angle_change(signals, self.screen_angle_reference)

    def _delta_seconds(self, timestamp: float) -> float:
        # timestamps are milliseconds; the first frame contributes nothing and
        # gaps (e.g. across a tracking loss) are capped at MAX_FRAME_GAP_SECONDS
        previous = self._last_timestamp
        self._last_timestamp = timestamp
        if previous is None:
            return 0.0
        gap = finite_or((timestamp - previous) / 1000.0, 0.0)
        return min(max(0.0, gap), MAX_FRAME_GAP_SECONDS)

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------
    def update_calibration(self, baseline: CalibrationBaseline):
        """
        Install a new baseline with fresh drift tracking.

        The baseline's screen-angle references replace the current list.
        Filter memory is kept.
        """
        self.baseline = baseline
        self.adaptive_baseline = AdaptiveBaseline(baseline.features)
        self.screen_angle_references = tuple(baseline.screen_angle_references)
        logger.info("Calibration replaced (baseline timestamp %.0f)", baseline.timestamp)

    def update_sensitivity(self, sensitivity: float):
        self.sensitivity = sensitivity

    def update_rule_toggles(self, rule_toggles: RuleToggles):
        self.rule_toggles = rule_toggles

    def update_custom_thresholds(self, custom_thresholds: Optional[CustomThresholds]):
        """Raises ConfigurationError and keeps the current overrides when an override is invalid."""
        if custom_thresholds is not None:
            scale_thresholds(self.sensitivity, custom_thresholds)
        self.custom_thresholds = custom_thresholds

    def update_screen_angle_reference(self, reference: Optional[ScreenAngleReference]):
        self.screen_angle_reference = reference

    def update_screen_angle_references(self, references: Sequence[ScreenAngleReference]):
        self.screen_angle_references = tuple(references)

    def set_debug_mode(self, enabled: bool):
        self.debug_mode = bool(enabled)

    def reset(self):
        """Clear filter memory and return the adaptive baseline to the calibrated values."""
        self.filters.reset()
        self.adaptive_baseline.reset()
        self._last_timestamp = None
        logger.info("PostureAnalyzer reset")
