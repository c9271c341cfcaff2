"""Snavely camera model with two-term radial distortion."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

import numpy as np

from slamkit.rotation import angle_axis_rotate_point


def cam_projection_with_distortion(camera: Sequence[float], point: Sequence[float]) -> np.ndarray:
    """Project ``point`` through a 9-parameter camera.

    The camera holds angle-axis rotation (0-2), translation (3-5), focal
    length (6) and second/fourth order radial distortion (7-8). The
    prediction is relative to the image centre.
    """
    cam = np.asarray(camera, dtype=float)
    if cam.shape != (9,):
        raise ValueError(f"camera must have 9 parameters, got shape {cam.shape}")
    p = angle_axis_rotate_point(cam[:3], point) + cam[3:6]

    xp = -float(p[0]) / float(p[2])
    yp = -float(p[1]) / float(p[2])

    l1 = float(cam[7])
    l2 = float(cam[8])
    r2 = xp * xp + yp * yp
    distortion = 1.0 + r2 * (l1 + l2 * r2)

    focal = float(cam[6])
    return np.array([focal * distortion * xp, focal * distortion * yp])


@dataclass(frozen=True)
class SnavelyReprojectionError:
    """Reprojection residual of one observed image point."""

    observed_x: float
    observed_y: float

    def residuals(self, camera: Sequence[float], point: Sequence[float]) -> np.ndarray:
        """Predicted minus observed position."""
        prediction = cam_projection_with_distortion(camera, point)
        return prediction - np.array([self.observed_x, self.observed_y])