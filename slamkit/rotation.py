"""Angle-axis and quaternion rotation helpers used by bundle adjustment."""

from __future__ import annotations

import math
import sys
from typing import Sequence

import numpy as np

_EPSILON = sys.float_info.epsilon


def _vector(values: Sequence[float], size: int, name: str) -> np.ndarray:
    arr = np.asarray(values, dtype=float)
    if arr.shape != (size,):
        raise ValueError(f"{name} must have exactly {size} components, got shape {arr.shape}")
    return arr


def dot_product(x: Sequence[float], y: Sequence[float]) -> float:
    """Dot product of two 3-vectors."""
    a = _vector(x, 3, "x")
    b = _vector(y, 3, "y")
    return float(a[0] * b[0] + a[1] * b[1] + a[2] * b[2])


def cross_product(x: Sequence[float], y: Sequence[float]) -> np.ndarray:
    """Cross product of two 3-vectors."""
    a = _vector(x, 3, "x")
    b = _vector(y, 3, "y")
    return np.array(
        [
            a[1] * b[2] - a[2] * b[1],
            a[2] * b[0] - a[0] * b[2],
            a[0] * b[1] - a[1] * b[0],
        ]
    )


def angle_axis_to_quaternion(angle_axis: Sequence[float]) -> np.ndarray:
    """Convert an angle-axis vector to a quaternion ``[w, x, y, z]``."""
    a0, a1, a2 = _vector(angle_axis, 3, "angle_axis")
    theta_squared = a0 * a0 + a1 * a1 + a2 * a2
    if theta_squared > _EPSILON:
        theta = math.sqrt(theta_squared)
        half_theta = theta * 0.5
        k = math.sin(half_theta) / theta
        return np.array([math.cos(half_theta), a0 * k, a1 * k, a2 * k])
    k = 0.5
    return np.array([1.0, a0 * k, a1 * k, a2 * k])


def quaternion_to_angle_axis(quaternion: Sequence[float]) -> np.ndarray:
    """Convert a quaternion ``[w, x, y, z]`` to an angle-axis vector."""
    q0, q1, q2, q3 = _vector(quaternion, 4, "quaternion")
    sin_squared_theta = q1 * q1 + q2 * q2 + q3 * q3
    if sin_squared_theta > _EPSILON:
        sin_theta = math.sqrt(sin_squared_theta)
        cos_theta = q0
        if cos_theta < 0.0:
            two_theta = 2.0 * math.atan2(-sin_theta, -cos_theta)
        else:
            two_theta = 2.0 * math.atan2(sin_theta, cos_theta)
        k = two_theta / sin_theta
    else:
        k = 2.0
    return np.array([q1 * k, q2 * k, q3 * k])


def angle_axis_rotate_point(angle_axis: Sequence[float], pt: Sequence[float]) -> np.ndarray:
    """Rotate ``pt`` by the rotation described by ``angle_axis``."""
    aa = _vector(angle_axis, 3, "angle_axis")
    p = _vector(pt, 3, "pt")
    theta2 = dot_product(aa, aa)
    if theta2 > _EPSILON:
        theta = math.sqrt(theta2)
        costheta = math.cos(theta)
        sintheta = math.sin(theta)
        w = aa / theta
        w_cross_pt = cross_product(w, p)
        tmp = dot_product(w, p) * (1.0 - costheta)
        return p * costheta + w_cross_pt * sintheta + w * tmp
    # First-order approximation near zero: R * pt = pt + w x pt.
    return p + cross_product(aa, p)