import os
import sys
import unittest

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from features.pose_types import ConfigurationError
from features.posture_features import PostureFeatures
from features.posture_rules import (
    DEFAULT_THRESHOLDS,
    AngleDeviations,
    CustomThresholds,
    PostureRule,
    RuleThresholds,
    RuleToggles,
    compute_deviations,
    evaluate_rules,
    forward_head_score,
    scale_factor,
    scale_thresholds,
)


class TestThresholdScaling(unittest.TestCase):
    def test_endpoints_and_midpoint(self):
        self.assertAlmostEqual(scale_factor(0.0), 2.0)
        self.assertAlmostEqual(scale_factor(0.5), 1.25)
        self.assertAlmostEqual(scale_factor(1.0), 0.5)
        self.assertAlmostEqual(scale_thresholds(0.5).forward_head, 12.5)
        self.assertAlmostEqual(scale_thresholds(1.0).head_tilt, 6.0)

    def test_out_of_range_sensitivity_is_clamped(self):
        self.assertEqual(scale_thresholds(-3.0), scale_thresholds(0.0))
        self.assertEqual(scale_thresholds(7.0), scale_thresholds(1.0))

    def test_higher_sensitivity_is_never_more_lenient(self):
        previous = scale_thresholds(0.0).as_dict()
        for step in range(1, 11):
            current = scale_thresholds(step / 10.0).as_dict()
            for name, value in current.items():
                self.assertLessEqual(value, previous[name], name)
            previous = current

    def test_custom_overrides_replace_centre_value(self):
        custom = CustomThresholds(forward_head=20.0, too_close=0.1)
        scaled = scale_thresholds(0.5, custom)
        self.assertAlmostEqual(scaled.forward_head, 25.0)
        self.assertAlmostEqual(scaled.forward_head_ffr, 0.125)
        self.assertAlmostEqual(scaled.head_tilt, DEFAULT_THRESHOLDS.head_tilt * 1.25)

    def test_non_positive_thresholds_are_rejected(self):
        with self.assertRaises(ConfigurationError):
            RuleThresholds(head_tilt=0.0)
        with self.assertRaises(ConfigurationError):
            scale_thresholds(0.5, CustomThresholds(shoulder_asymmetry=-1.0))


class TestDeviations(unittest.TestCase):
    def test_tilt_and_shoulders_are_absolute(self):
        baseline = PostureFeatures(head_tilt_angle=2.0, shoulder_diff=3.0)
        current = PostureFeatures(head_tilt_angle=-10.0, shoulder_diff=1.0)
        dev = compute_deviations(current, baseline)
        self.assertAlmostEqual(dev.head_tilt, 12.0)
        self.assertAlmostEqual(dev.shoulder_diff, 2.0)

    def test_other_channels_are_signed(self):
        baseline = PostureFeatures(head_forward_angle=10.0, torso_angle=5.0, face_frame_ratio=0.2)
        current = PostureFeatures(head_forward_angle=4.0, torso_angle=1.0, face_frame_ratio=0.1)
        dev = compute_deviations(current, baseline)
        self.assertAlmostEqual(dev.head_forward, -6.0)
        self.assertAlmostEqual(dev.torso_slouch, -4.0)
        self.assertAlmostEqual(dev.face_frame_ratio, -0.1)


class TestRuleEvaluation(unittest.TestCase):
    def setUp(self):
        self.thresholds = scale_thresholds(0.5)
        self.toggles = RuleToggles.all_enabled()

    def test_no_deviation_no_violation(self):
        self.assertEqual(evaluate_rules(AngleDeviations(), self.thresholds, self.toggles), [])

    def test_exactly_at_threshold_fires_with_zero_severity(self):
        violations = evaluate_rules(AngleDeviations(head_tilt=15.0), self.thresholds, self.toggles)
        self.assertEqual([v.rule for v in violations], [PostureRule.HEAD_TILT])
        self.assertEqual(violations[0].severity, 0.0)

    def test_severity_saturates_at_twice_threshold(self):
        violations = evaluate_rules(AngleDeviations(head_tilt=30.0), self.thresholds, self.toggles)
        self.assertEqual(violations[0].severity, 1.0)
        violations = evaluate_rules(AngleDeviations(head_tilt=90.0), self.thresholds, self.toggles)
        self.assertEqual(violations[0].severity, 1.0)

    def test_severity_in_range(self):
        dev = AngleDeviations(head_forward=30.0, torso_slouch=40.0, head_tilt=20.0,
                              nose_to_ear_avg=0.05, face_frame_ratio=0.1, shoulder_diff=13.0)
        violations = evaluate_rules(dev, self.thresholds, self.toggles)
        self.assertEqual(
            [v.rule for v in violations],
            [PostureRule.FORWARD_HEAD, PostureRule.SLOUCH, PostureRule.HEAD_TILT, PostureRule.SHOULDER_ASYMMETRY],
        )
        for v in violations:
            self.assertGreaterEqual(v.severity, 0.0)
            self.assertLessEqual(v.severity, 1.0)

    def test_forward_head_is_weighted_combination(self):
        # NTE alone at 1x threshold only contributes 0.6
        dev = AngleDeviations(nose_to_ear_avg=self.thresholds.forward_head_nte)
        self.assertAlmostEqual(forward_head_score(dev, self.thresholds), 0.6)
        self.assertEqual(evaluate_rules(dev, self.thresholds, self.toggles), [])

        dev = AngleDeviations(
            nose_to_ear_avg=self.thresholds.forward_head_nte,
            face_frame_ratio=self.thresholds.forward_head_ffr,
            head_forward=self.thresholds.forward_head,
        )
        self.assertAlmostEqual(forward_head_score(dev, self.thresholds), 1.0)

    def test_backward_movement_does_not_score(self):
        dev = AngleDeviations(nose_to_ear_avg=-0.5, face_frame_ratio=-0.5, head_forward=-40.0, torso_slouch=-40.0)
        self.assertEqual(evaluate_rules(dev, self.thresholds, self.toggles), [])

    def test_disabled_rules_never_fire(self):
        dev = AngleDeviations(head_forward=80.0, torso_slouch=80.0, head_tilt=80.0,
                              nose_to_ear_avg=1.0, face_frame_ratio=1.0, shoulder_diff=80.0)
        none_enabled = RuleToggles(forward_head=False, slouch=False, head_tilt=False,
                                   too_close=False, shoulder_asymmetry=False)
        self.assertEqual(evaluate_rules(dev, self.thresholds, none_enabled), [])

    def test_slouch_disabled_by_default(self):
        dev = AngleDeviations(torso_slouch=80.0)
        self.assertEqual(evaluate_rules(dev, self.thresholds, RuleToggles()), [])

    def test_too_close_reported_when_forward_head_disabled(self):
        dev = AngleDeviations(nose_to_ear_avg=0.1)
        toggles = RuleToggles().with_rule('forward_head', False)
        violations = evaluate_rules(dev, self.thresholds, toggles)
        self.assertEqual([v.rule for v in violations], [PostureRule.TOO_CLOSE])
        self.assertEqual(violations[0].message, 'Too close to screen')

    def test_unknown_toggle(self):
        with self.assertRaises(ConfigurationError):
            RuleToggles().with_rule('elbows', True)


if __name__ == '__main__':
    unittest.main()
