import math
import os
import sys
import unittest

import numpy as np

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
from utils.math_utils import (
    Point,
    angle_from_vertical,
    clamp,
    clamp01,
    distance_2d,
    finite_or,
    is_finite,
    midpoint,
    nearest_index,
    safe_span,
)


class TestMathUtils(unittest.TestCase):
    def test_safe_span_floors_degenerate_values(self):
        self.assertEqual(safe_span(0.0), 1.0)
        self.assertEqual(safe_span(float('nan')), 1.0)
        self.assertEqual(safe_span(float('inf')), 1.0)
        self.assertEqual(safe_span(0.25), 0.25)

    def test_finite_helpers(self):
        self.assertTrue(is_finite(1))
        self.assertFalse(is_finite(None))
        self.assertFalse(is_finite('abc'))
        self.assertEqual(finite_or(float('-inf'), 2.0), 2.0)

    def test_clamp(self):
        self.assertEqual(clamp(5.0, 0.0, 1.0), 1.0)
        self.assertEqual(clamp(-5.0, 0.0, 1.0), 0.0)
        self.assertEqual(clamp01(float('nan')), 0.0)
        self.assertEqual(clamp01(0.4), 0.4)

    def test_midpoint_and_distance(self):
        mid = midpoint(Point(0.0, 0.0, 0.0), Point(2.0, 4.0, -2.0))
        self.assertEqual(mid, Point(1.0, 2.0, -1.0))
        self.assertAlmostEqual(distance_2d(Point(0, 0, 5), Point(3, 4, -5)), 5.0)

    def test_distance_does_not_overflow(self):
        self.assertAlmostEqual(distance_2d(Point(1e200, 1e200, 0), Point(0, 0, 0)), math.sqrt(2) * 1e200, delta=1e186)
        self.assertEqual(distance_2d(Point(float('inf'), 0, 0), Point(0, 0, 0)), 0.0)
        self.assertEqual(distance_2d(Point(float('nan'), 0, 0), Point(0, 0, 0)), 0.0)

    def test_angle_from_vertical(self):
        self.assertEqual(angle_from_vertical(0.0, 0.0), 0.0)
        self.assertAlmostEqual(angle_from_vertical(1.0, 1.0), 45.0)
        self.assertAlmostEqual(angle_from_vertical(0.0, 1.0), 0.0)
        self.assertLess(angle_from_vertical(-1.0, 1.0), 0.0)

    def test_nearest_index(self):
        candidates = np.array([[0.0, 0.0], [1.0, 1.0], [5.0, 5.0]])
        self.assertEqual(nearest_index(np.array([0.9, 1.2]), candidates), 1)
        self.assertIsNone(nearest_index(np.array([0.0, 0.0]), np.empty((0, 2))))
        self.assertEqual(nearest_index(np.array([4.0, 4.0]), candidates), 2)


if __name__ == '__main__':
    unittest.main()
