"""
Posture rules: sensitivity-scaled thresholds and per-rule scoring.

Every rule turns a deviation from baseline into a normalized score
(deviation / threshold). A violation fires when the score reaches 1;
severity is the excess over 1, clamped to [0, 1], so it is 0 right at the
threshold and saturates at twice the threshold.

Forward head and too-close share one combined score built from three
signals (nose-to-ear ratio, face/frame ratio, head-forward angle); the
nose-to-ear ratio dominates because it is the least sensitive to camera
placement.
"""

from dataclasses import dataclass, fields, replace
from enum import Enum
from typing import Callable, Dict, List, Optional

from features.pose_types import ConfigurationError
from features.posture_features import PostureFeatures
from utils.math_utils import clamp, clamp01, is_finite

# Weights of the combined forward-head score
NTE_WEIGHT = 0.6
FFR_WEIGHT = 0.2
ANGLE_WEIGHT = 0.2

# Threshold multiplier at sensitivity 0 (lenient) and 1 (strict)
LENIENT_SCALE = 2.0
STRICT_SCALE = 0.5


class PostureRule(str, Enum):
    FORWARD_HEAD = 'FORWARD_HEAD'
    SLOUCH = 'SLOUCH'
    HEAD_TILT = 'HEAD_TILT'
    TOO_CLOSE = 'TOO_CLOSE'
    SHOULDER_ASYMMETRY = 'SHOULDER_ASYMMETRY'


RULE_MESSAGES = {
    PostureRule.FORWARD_HEAD: 'Head is leaning forward',
    PostureRule.SLOUCH: 'Slouching detected',
    PostureRule.HEAD_TILT: 'Head is tilted',
    PostureRule.TOO_CLOSE: 'Too close to screen',
    PostureRule.SHOULDER_ASYMMETRY: 'Shoulders are uneven',
}


@dataclass(frozen=True)
class RuleThresholds:
    forward_head: float = 10.0       # degrees
    forward_head_ffr: float = 0.05   # face/frame ratio
    forward_head_nte: float = 0.02   # nose-to-ear ratio
    slouch: float = 20.0
    head_tilt: float = 12.0
    shoulder_asymmetry: float = 10.0

    def __post_init__(self):
        for f in fields(self):
            value = getattr(self, f.name)
            if not is_finite(value) or value <= 0:
                raise ConfigurationError(f"threshold '{f.name}' must be a positive number, got {value}")

    def as_dict(self) -> Dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


DEFAULT_THRESHOLDS = RuleThresholds()


@dataclass(frozen=True)
class CustomThresholds:
    """User overrides of the centre thresholds; None keeps the default."""
    forward_head: Optional[float] = None
    head_tilt: Optional[float] = None
    too_close: Optional[float] = None
    shoulder_asymmetry: Optional[float] = None

    def apply(self, base: RuleThresholds) -> RuleThresholds:
        overrides = {}
        if self.forward_head is not None:
            overrides['forward_head'] = self.forward_head
        if self.head_tilt is not None:
            overrides['head_tilt'] = self.head_tilt
        if self.too_close is not None:
            overrides['forward_head_ffr'] = self.too_close
        if self.shoulder_asymmetry is not None:
            overrides['shoulder_asymmetry'] = self.shoulder_asymmetry
        return replace(base, **overrides)


@dataclass(frozen=True)
class RuleToggles:
    forward_head: bool = True
    slouch: bool = False
    head_tilt: bool = True
    too_close: bool = True
    shoulder_asymmetry: bool = True

    def with_rule(self, name: str, enabled: bool) -> "RuleToggles":
        """Copy with one toggle changed."""
        if name not in {f.name for f in fields(self)}:
            raise ConfigurationError(f"unknown rule toggle: {name}")
        return replace(self, **{name: bool(enabled)})

    def as_dict(self) -> Dict[str, bool]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def all_enabled(cls) -> "RuleToggles":
        return cls(forward_head=True, slouch=True, head_tilt=True, too_close=True, shoulder_asymmetry=True)


@dataclass(frozen=True)
class AngleDeviations:
    """
    Smoothed features minus the current baseline.

    head_tilt and shoulder_diff are absolute differences (either side
    counts); the remaining channels keep their sign.
    """
    head_forward: float = 0.0
    torso_slouch: float = 0.0
    head_tilt: float = 0.0
    face_frame_ratio: float = 0.0
    face_y_delta: float = 0.0
    nose_to_ear_avg: float = 0.0
    shoulder_diff: float = 0.0

    def as_dict(self) -> Dict[str, float]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class Violation:
    rule: PostureRule
    severity: float
    message: str

    def as_dict(self) -> dict:
        return {'rule': self.rule.value, 'severity': self.severity, 'message': self.message}


def compute_deviations(current: PostureFeatures, baseline: PostureFeatures) -> AngleDeviations:
    return AngleDeviations(
        head_forward=current.head_forward_angle - baseline.head_forward_angle,
        torso_slouch=current.torso_angle - baseline.torso_angle,
        head_tilt=abs(current.head_tilt_angle - baseline.head_tilt_angle),
        face_frame_ratio=current.face_frame_ratio - baseline.face_frame_ratio,
        face_y_delta=current.face_y - baseline.face_y,
        nose_to_ear_avg=current.nose_to_ear_avg - baseline.nose_to_ear_avg,
        shoulder_diff=abs(current.shoulder_diff - baseline.shoulder_diff),
    )


def scale_factor(sensitivity: float) -> float:
    """Linear from LENIENT_SCALE at 0 to STRICT_SCALE at 1."""
    s = clamp(sensitivity, 0.0, 1.0) if is_finite(sensitivity) else 0.5
    return LENIENT_SCALE + (STRICT_SCALE - LENIENT_SCALE) * s


def scale_thresholds(sensitivity: float, custom: Optional[CustomThresholds] = None,
                     base: RuleThresholds = DEFAULT_THRESHOLDS) -> RuleThresholds:
    """
    Thresholds for a sensitivity in [0, 1]; out-of-range values are clamped.

    Higher sensitivity gives smaller (stricter) thresholds.
    """
    centre = custom.apply(base) if custom is not None else base
    factor = scale_factor(sensitivity)
    return RuleThresholds(**{name: value * factor for name, value in centre.as_dict().items()})


# ----------------------------------------------------------------------
# Scoring, one pure function per rule
# ----------------------------------------------------------------------
def _normalized(deviation: float, threshold: float) -> float:
    return max(0.0, deviation) / threshold


def forward_head_components(deviations: AngleDeviations, thresholds: RuleThresholds) -> Dict[str, float]:
    """Individual normalized forward-head signals (diagnostics)."""
    return {
        'nte': _normalized(deviations.nose_to_ear_avg, thresholds.forward_head_nte),
        'ffr': _normalized(deviations.face_frame_ratio, thresholds.forward_head_ffr),
        'angle': _normalized(deviations.head_forward, thresholds.forward_head),
    }


def forward_head_score(deviations: AngleDeviations, thresholds: RuleThresholds) -> float:
    parts = forward_head_components(deviations, thresholds)
    return NTE_WEIGHT * parts['nte'] + FFR_WEIGHT * parts['ffr'] + ANGLE_WEIGHT * parts['angle']


def slouch_score(deviations: AngleDeviations, thresholds: RuleThresholds) -> float:
    return _normalized(deviations.torso_slouch, thresholds.slouch)


def head_tilt_score(deviations: AngleDeviations, thresholds: RuleThresholds) -> float:
    return _normalized(deviations.head_tilt, thresholds.head_tilt)


def shoulder_asymmetry_score(deviations: AngleDeviations, thresholds: RuleThresholds) -> float:
    return _normalized(deviations.shoulder_diff, thresholds.shoulder_asymmetry)


RULE_SCORERS: Dict[PostureRule, Callable[[AngleDeviations, RuleThresholds], float]] = {
    PostureRule.FORWARD_HEAD: forward_head_score,
    PostureRule.TOO_CLOSE: forward_head_score,
    PostureRule.SLOUCH: slouch_score,
    PostureRule.HEAD_TILT: head_tilt_score,
    PostureRule.SHOULDER_ASYMMETRY: shoulder_asymmetry_score,
}


def severity_from_score(score: float) -> float:
    return clamp01(score - 1.0)


def _check(rule: PostureRule, deviations: AngleDeviations, thresholds: RuleThresholds) -> Optional[Violation]:
    score = RULE_SCORERS[rule](deviations, thresholds)
    if not score >= 1.0:
        return None
    return Violation(rule=rule, severity=severity_from_score(score), message=RULE_MESSAGES[rule])


def evaluate_rules(deviations: AngleDeviations, thresholds: RuleThresholds,
                   toggles: RuleToggles) -> List[Violation]:
    """
    Evaluate every enabled rule.

    Forward head and too-close are one check: it runs when either toggle is
    on and reports FORWARD_HEAD, or TOO_CLOSE when only that toggle is on.

    Returns:
        List of violations in a fixed rule order
    """
    violations = []

    if toggles.forward_head or toggles.too_close:
        rule = PostureRule.FORWARD_HEAD if toggles.forward_head else PostureRule.TOO_CLOSE
        hit = _check(rule, deviations, thresholds)
        if hit is not None:
            violations.append(hit)

    for rule, enabled in (
        (PostureRule.SLOUCH, toggles.slouch),
        (PostureRule.HEAD_TILT, toggles.head_tilt),
        (PostureRule.SHOULDER_ASYMMETRY, toggles.shoulder_asymmetry),
    ):
        if not enabled:
            continue
        hit = _check(rule, deviations, thresholds)
        if hit is not None:
            violations.append(hit)

    return violations
