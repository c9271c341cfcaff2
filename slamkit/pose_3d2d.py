"""Camera pose from 3D-2D correspondences by Gauss-Newton bundle adjustment."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

import numpy as np

from slamkit.se3 import SE3

logger = logging.getLogger(__name__)


def projection_jacobian(pc: Sequence[float], fx: float, fy: float) -> np.ndarray:
    """Jacobian (2x6) of the reprojection error of a camera-frame point.

    The error is observed minus projected pixel. The derivative is taken with
    respect to a left-multiplied twist, translation part first.
    """
    X, Y, Z = (float(v) for v in np.asarray(pc, dtype=float).ravel())
    inv_z = 1.0 / Z
    inv_z2 = inv_z * inv_z
    return np.array(
        [
            [
                -fx * inv_z,
                0.0,
                fx * X * inv_z2,
                fx * X * Y * inv_z2,
                -fx - fx * X * X * inv_z2,
                fx * Y * inv_z,
            ],
            [
                0.0,
                -fy * inv_z,
                fy * Y * inv_z2,
                fy + fy * Y * Y * inv_z2,
                -fy * X * Y * inv_z2,
                -fy * X * inv_z,
            ],
        ]
    )


def bundle_adjustment_gauss_newton(
    points_3d,
    points_2d,
    K,
    pose: Optional[SE3] = None,
    iterations: int = 10,
) -> SE3:
    """Refine ``pose`` so that ``K * (pose * P)`` matches the observed pixels.

    Iterations stop when the update is NaN, when the cost stops falling or
    when the update becomes smaller than ``1e-6``.
    """
    pts3 = np.asarray(points_3d, dtype=float).reshape(-1, 3)
    pts2 = np.asarray(points_2d, dtype=float).reshape(-1, 2)
    if len(pts3) != len(pts2):
        raise ValueError("points_3d and points_2d must have the same length")
    if len(pts3) == 0:
        raise ValueError("no point pairs")
    Km = np.asarray(K, dtype=float)
    if Km.shape != (3, 3):
        raise ValueError("K must be a 3x3 matrix")
    fx, fy, cx, cy = Km[0, 0], Km[1, 1], Km[0, 2], Km[1, 2]
    if pose is None:
        pose = SE3()

    last_cost = 0.0
    for it in range(iterations):
        H = np.zeros((6, 6))
        b = np.zeros(6)
        cost = 0.0
        for p3, p2 in zip(pts3, pts2):
            pc = pose.act(p3)
            proj = np.array([fx * pc[0] / pc[2] + cx, fy * pc[1] / pc[2] + cy])
            e = p2 - proj
            cost += float(e @ e)
            J = projection_jacobian(pc, fx, fy)
            H += J.T @ J
            b += -J.T @ e

        try:
            dx = np.linalg.solve(H, b)
        except np.linalg.LinAlgError:
            dx = np.full(6, np.nan)
        if np.isnan(dx[0]):
            logger.info("result is nan")
            break
        if it > 0 and cost >= last_cost:
            logger.info("cost: %g, last cost: %g", cost, last_cost)
            break

        pose = SE3.exp(dx) @ pose
        last_cost = cost
        logger.debug("iteration %d cost=%.12g", it, cost)
        if np.linalg.norm(dx) < 1e-6:
            break

    logger.debug("pose by g-n:\n%s", pose.matrix())
    return pose