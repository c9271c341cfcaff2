"""Estimating the rigid motion between two matched 3D point sets."""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from slamkit.se3 import SE3, hat

logger = logging.getLogger(__name__)


def pixel2cam(p: Sequence[float], K) -> np.ndarray:
    """Convert a pixel coordinate to normalized camera coordinates."""
    Km = np.asarray(K, dtype=float)
    x, y = (float(v) for v in p)
    return np.array([(x - Km[0, 2]) / Km[0, 0], (y - Km[1, 2]) / Km[1, 1]])


def _point_sets(pts1, pts2) -> tuple[np.ndarray, np.ndarray]:
    a = np.asarray(pts1, dtype=float).reshape(-1, 3)
    b = np.asarray(pts2, dtype=float).reshape(-1, 3)
    if a.shape != b.shape:
        raise ValueError("point sets must have the same size")
    if len(a) == 0:
        raise ValueError("no point pairs")
    return a, b


def pose_estimation_3d3d(pts1, pts2) -> tuple[np.ndarray, np.ndarray]:
    """Closed-form ICP by SVD: find ``R, t`` with ``p1 = R p2 + t``."""
    a, b = _point_sets(pts1, pts2)
    c1 = a.mean(axis=0)
    c2 = b.mean(axis=0)
    q1 = a - c1
    q2 = b - c2
    W = q1.T @ q2
    logger.debug("W=%s", W)
    U, _, Vt = np.linalg.svd(W)
    R = U @ Vt
    if np.linalg.det(R) < 0:
        R = -R
    t = c1 - R @ c2
    return R, t


def bundle_adjustment_3d3d(pts1, pts2, iterations: int = 10) -> SE3:
    """Refine the pose ``T`` minimizing ``|p1 - T p2|^2`` with Levenberg-Marquardt.

    The pose starts at identity and is updated by left multiplication.
    """
    a, b = _point_sets(pts1, pts2)
    pose = SE3()

    def evaluate(T: SE3) -> tuple[np.ndarray, float]:
        transformed = b @ T.rotation.T + T.translation
        err = a - transformed
        return transformed, float(np.sum(err * err))

    transformed, cost = evaluate(pose)
    lam = None
    for it in range(iterations):
        H = np.zeros((6, 6))
        g = np.zeros(6)
        for p1, pt in zip(a, transformed):
            e = p1 - pt
            J = np.hstack([-np.eye(3), hat(pt)])
            H += J.T @ J
            g += J.T @ e
        if lam is None:
            lam = 1e-5 * float(np.max(np.diag(H)))
        accepted = False
        while not accepted:
            damped = H + lam * np.diag(np.diag(H))
            try:
                dx = np.linalg.solve(damped, -g)
            except np.linalg.LinAlgError:
                dx = np.full(6, np.nan)
            if np.isnan(dx).any():
                logger.info("update is nan")
                return pose
            candidate = SE3.exp(dx) @ pose
            cand_transformed, cand_cost = evaluate(candidate)
            if cand_cost <= cost:
                pose, transformed, cost = candidate, cand_transformed, cand_cost
                lam = max(lam / 10.0, 1e-12)
                accepted = True
            else:
                lam *= 10.0
                if lam > 1e12:
                    return pose
        logger.debug("iteration %d cost=%.12g", it, cost)
        if np.linalg.norm(dx) < 1e-12:
            break
    return pose