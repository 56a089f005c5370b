"""
Numeric-safety helpers for landmark geometry.

Landmark-derived spans can legitimately collapse to zero (coincident ears,
a face seen exactly edge-on). Every denominator built from landmarks goes
through safe_span() so the result is always finite.
"""

import math
from collections import namedtuple
from typing import Optional

import numpy as np

Point = namedtuple("Point", ["x", "y", "z"])


def is_finite(value) -> bool:
    """True for real, finite numbers."""
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def finite_or(value, fallback: float = 0.0) -> float:
    """Return value as float, or fallback when it is NaN/inf/not numeric."""
    if is_finite(value):
        return float(value)
    return float(fallback)


def safe_span(span: float) -> float:
    """Floor a zero (or non-finite) span to 1 before it is used as a divisor."""
    if not is_finite(span) or span == 0:
        return 1.0
    return float(span)


def clamp(value: float, low: float, high: float) -> float:
    return float(np.clip(value, low, high))


def clamp01(value: float) -> float:
    """Clamp to [0, 1]; NaN maps to 0."""
    return clamp(finite_or(value, 0.0), 0.0, 1.0)


def midpoint(p1, p2) -> Point:
    """Midpoint of two landmarks (anything with .x/.y/.z)."""
    return Point((p1.x + p2.x) / 2.0, (p1.y + p2.y) / 2.0, (p1.z + p2.z) / 2.0)


def distance_2d(p1, p2) -> float:
    """Image-plane distance between two landmarks; 0 when it is not finite."""
    return finite_or(math.hypot(p1.x - p2.x, p1.y - p2.y), 0.0)


def angle_from_vertical(forward: float, vertical: float) -> float:
    """
    Lean angle in degrees from a (depth, vertical) offset pair.

    0 when the segment is perfectly vertical; positive when the upper
    end sits in front of the lower end.
    """
    if forward == 0 and vertical == 0:
        return 0.0
    return finite_or(math.degrees(math.atan2(forward, vertical)), 0.0)


def nearest_index(target: np.ndarray, candidates: np.ndarray) -> Optional[int]:
    """Index of the candidate row closest (euclidean) to target, or None if empty."""
    if len(candidates) == 0:
        return None
    distances = np.linalg.norm(candidates - target, axis=1)
    return int(np.argmin(distances))
