"""Rigid-body transforms in 3D with exponential maps."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Sequence

import numpy as np
from scipy.spatial.transform import Rotation

_SMALL = 1e-10


def hat(v: Sequence[float]) -> np.ndarray:
    """Skew-symmetric matrix ``[v]_x`` with ``hat(v) @ w == v x w``."""
    x, y, z = np.asarray(v, dtype=float).ravel()
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def so3_exp(omega: Sequence[float]) -> np.ndarray:
    """Rotation matrix for the rotation vector ``omega`` (Rodrigues' formula)."""
    w = np.asarray(omega, dtype=float).ravel()
    if w.shape != (3,):
        raise ValueError("omega must have 3 components")
    theta = float(np.linalg.norm(w))
    K = hat(w)
    if theta < _SMALL:
        return np.eye(3) + K
    return (
        np.eye(3)
        + math.sin(theta) / theta * K
        + (1.0 - math.cos(theta)) / (theta * theta) * (K @ K)
    )


def so3_log(rotation) -> np.ndarray:
    """Rotation vector of a rotation matrix."""
    R = np.asarray(rotation, dtype=float)
    if R.shape != (3, 3):
        raise ValueError("rotation must be a 3x3 matrix")
    return np.asarray(Rotation.from_matrix(R).as_rotvec(), dtype=float)


@dataclass(frozen=True)
class SE3:
    """Rigid transform ``p -> R p + t``."""

    rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    translation: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self) -> None:
        R = np.asarray(self.rotation, dtype=float)
        t = np.asarray(self.translation, dtype=float).ravel()
        if R.shape != (3, 3) or t.shape != (3,):
            raise ValueError("rotation must be 3x3 and translation 3-vector")
        object.__setattr__(self, "rotation", R)
        object.__setattr__(self, "translation", t)

    @classmethod
    def exp(cls, xi: Sequence[float]) -> "SE3":
        """Transform for the twist ``xi = (rho, phi)``, translation part first."""
        v = np.asarray(xi, dtype=float).ravel()
        if v.shape != (6,):
            raise ValueError("xi must have 6 components")
        rho, phi = v[:3], v[3:]
        R = so3_exp(phi)
        theta = float(np.linalg.norm(phi))
        K = hat(phi)
        if theta < _SMALL:
            V = np.eye(3) + 0.5 * K
        else:
            V = (
                np.eye(3)
                + (1.0 - math.cos(theta)) / (theta * theta) * K
                + (theta - math.sin(theta)) / (theta ** 3) * (K @ K)
            )
        return cls(R, V @ rho)

    def act(self, point: Sequence[float]) -> np.ndarray:
        """Apply the transform to a point."""
        return self.rotation @ np.asarray(point, dtype=float) + self.translation

    def inverse(self) -> "SE3":
        """The inverse transform."""
        Rt = self.rotation.T
        return SE3(Rt, -Rt @ self.translation)

    def matrix(self) -> np.ndarray:
        """Homogeneous 4x4 matrix."""
        m = np.eye(4)
        m[:3, :3] = self.rotation
        m[:3, 3] = self.translation
        return m

    def __matmul__(self, other: "SE3") -> "SE3":
        if not isinstance(other, SE3):
            return NotImplemented
        return SE3(self.rotation @ other.rotation, self.rotation @ other.translation + self.translation)