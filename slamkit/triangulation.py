"""Triangulating matched pixels from two calibrated views."""

from __future__ import annotations

from typing import Sequence

import numpy as np

from slamkit.pose_3d3d import pixel2cam


def get_color(depth: float) -> tuple[float, float, float]:
    """BGR plotting colour for a depth, clamped to the range 10 to 50."""
    up_th, low_th = 50.0, 10.0
    th_range = up_th - low_th
    d = min(max(float(depth), low_th), up_th)
    return (255.0 * d / th_range, 0.0, 255.0 * (1.0 - d / th_range))


def _dlt(P1: np.ndarray, P2: np.ndarray, x1: Sequence[float], x2: Sequence[float]) -> np.ndarray:
    A = np.array(
        [
            x1[0] * P1[2] - P1[0],
            x1[1] * P1[2] - P1[1],
            x2[0] * P2[2] - P2[0],
            x2[1] * P2[2] - P2[1],
        ]
    )
    _, _, Vt = np.linalg.svd(A)
    X = Vt[-1]
    return X[:3] / X[3]


def triangulate(points1, points2, R, t, K) -> np.ndarray:
    """Triangulate pixel pairs seen by cameras ``[I|0]`` and ``[R|t]``.

    Returns one 3D point per pair, in the first camera's frame.
    """
    p1 = np.asarray(points1, dtype=float).reshape(-1, 2)
    p2 = np.asarray(points2, dtype=float).reshape(-1, 2)
    if len(p1) != len(p2):
        raise ValueError("points1 and points2 must have the same length")
    Rm = np.asarray(R, dtype=float)
    tv = np.asarray(t, dtype=float).ravel()
    if Rm.shape != (3, 3) or tv.shape != (3,):
        raise ValueError("R must be 3x3 and t a 3-vector")
    T1 = np.hstack([np.eye(3), np.zeros((3, 1))])
    T2 = np.hstack([Rm, tv.reshape(3, 1)])
    result = [
        _dlt(T1, T2, pixel2cam(a, K), pixel2cam(b, K)) for a, b in zip(p1, p2)
    ]
    return np.array(result, dtype=float).reshape(-1, 3)