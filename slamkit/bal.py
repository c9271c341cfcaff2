"""Loading, saving and conditioning of Bundle Adjustment in the Large problems."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Optional, Sequence, TypeVar, Union

import numpy as np

from slamkit.rotation import (
    angle_axis_rotate_point,
    angle_axis_to_quaternion,
    quaternion_to_angle_axis,
)
from slamkit.sampling import rand_normal

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
_T = TypeVar("_T")


def median(data: Sequence[float]) -> float:
    """Return the element at sorted position ``n // 2`` (upper median for even sizes)."""
    values = np.asarray(data, dtype=float).ravel()
    if values.size == 0:
        raise ValueError("median of empty data")
    mid = values.size // 2
    return float(np.partition(values, mid)[mid])


def perturb_point3(sigma: float, point: Sequence[float], rng: Optional[random.Random] = None) -> np.ndarray:
    """Return ``point`` with independent normal noise of deviation ``sigma`` added."""
    base = np.asarray(point, dtype=float)
    if base.shape != (3,):
        raise ValueError(f"point must have 3 components, got shape {base.shape}")
    noise = np.array([rand_normal(rng) * sigma for _ in range(3)])
    return base + noise


def _reader(tokens: Iterator[str]) -> Callable[[Callable[[str], _T]], _T]:
    def take(kind: Callable[[str], _T]) -> _T:
        try:
            token = next(tokens)
        except StopIteration:
            raise ValueError("Invalid UW data file: unexpected end of data") from None
        try:
            return kind(token)
        except ValueError:
            raise ValueError(f"Invalid UW data file: bad value {token!r}") from None

    return take


@dataclass
class BALProblem:
    """A bundle adjustment problem: cameras, points and their observations.

    ``parameters`` holds all camera blocks followed by all point blocks.
    Cameras are angle-axis (3), translation (3), focal, k1, k2; with
    ``use_quaternions`` the rotation is a quaternion (4) instead.
    """

    num_cameras: int
    num_points: int
    camera_index: np.ndarray
    point_index: np.ndarray
    observations: np.ndarray
    parameters: np.ndarray
    use_quaternions: bool = False

    def __post_init__(self) -> None:
        self.camera_index = np.asarray(self.camera_index, dtype=int).ravel()
        self.point_index = np.asarray(self.point_index, dtype=int).ravel()
        self.observations = np.asarray(self.observations, dtype=float).reshape(-1, 2)
        self.parameters = np.asarray(self.parameters, dtype=float).ravel()
        if self.num_cameras < 0 or self.num_points < 0:
            raise ValueError("counts must not be negative")
        n_obs = len(self.observations)
        if len(self.camera_index) != n_obs or len(self.point_index) != n_obs:
            raise ValueError("index arrays and observations differ in length")
        expected = self.camera_block_size * self.num_cameras + self.point_block_size * self.num_points
        if self.parameters.size != expected:
            raise ValueError(f"expected {expected} parameters, got {self.parameters.size}")

    @classmethod
    def from_file(cls, filename: PathLike, use_quaternions: bool = False) -> "BALProblem":
        """Read a problem from a BAL text file."""
        with open(filename, "r", encoding="ascii") as handle:
            take = _reader(iter(handle.read().split()))

        num_cameras = take(int)
        num_points = take(int)
        num_observations = take(int)
        if num_cameras < 0 or num_points < 0 or num_observations < 0:
            raise ValueError("Invalid UW data file: negative count in header")
        logger.debug("Header: %d %d %d", num_cameras, num_points, num_observations)

        camera_index = []
        point_index = []
        observations = []
        for _ in range(num_observations):
            camera_index.append(take(int))
            point_index.append(take(int))
            observations.append((take(float), take(float)))

        num_parameters = 9 * num_cameras + 3 * num_points
        params = np.array([take(float) for _ in range(num_parameters)], dtype=float)

        if use_quaternions:
            cameras = params[: 9 * num_cameras].reshape(num_cameras, 9)
            blocks = [np.concatenate([angle_axis_to_quaternion(cam[:3]), cam[3:]]) for cam in cameras]
            params = np.concatenate(blocks + [params[9 * num_cameras:]])

        return cls(
            num_cameras=num_cameras,
            num_points=num_points,
            camera_index=np.array(camera_index, dtype=int),
            point_index=np.array(point_index, dtype=int),
            observations=np.array(observations, dtype=float).reshape(-1, 2),
            parameters=params,
            use_quaternions=use_quaternions,
        )

    @property
    def camera_block_size(self) -> int:
        return 10 if self.use_quaternions else 9

    @property
    def point_block_size(self) -> int:
        return 3

    @property
    def num_observations(self) -> int:
        return len(self.observations)

    @property
    def num_parameters(self) -> int:
        return self.parameters.size

    @property
    def cameras(self) -> np.ndarray:
        """Writable view of camera blocks, one row per camera."""
        end = self.camera_block_size * self.num_cameras
        return self.parameters[:end].reshape(self.num_cameras, self.camera_block_size)

    @property
    def points(self) -> np.ndarray:
        """Writable view of point blocks, one row per point."""
        start = self.camera_block_size * self.num_cameras
        return self.parameters[start:].reshape(self.num_points, self.point_block_size)

    def camera_for_observation(self, i: int) -> np.ndarray:
        """Writable view of the camera seen in observation ``i``."""
        return self.cameras[self.camera_index[i]]

    def point_for_observation(self, i: int) -> np.ndarray:
        """Writable view of the point seen in observation ``i``."""
        return self.points[self.point_index[i]]

    def write_to_file(self, filename: PathLike) -> None:
        """Write the problem in BAL text format (rotations as angle-axis)."""
        lines = [f"{self.num_cameras} {self.num_points} {self.num_observations}"]
        for cam, pt, (x, y) in zip(self.camera_index, self.point_index, self.observations):
            lines.append(f"{int(cam)} {int(pt)} {float(x):g} {float(y):g}")
        for camera in self.cameras:
            if self.use_quaternions:
                block = np.concatenate([quaternion_to_angle_axis(camera[:4]), camera[4:]])
            else:
                block = camera
            lines.extend(f"{float(v):.16g}" for v in block)
        lines.extend(f"{float(v):.16g}" for v in self.points.ravel())
        Path(filename).write_text("\n".join(lines) + "\n", encoding="ascii")

    def write_to_ply_file(self, filename: PathLike) -> None:
        """Write camera centres (green) and points (white) as an ASCII PLY cloud."""
        lines = [
            "ply",
            "format ascii 1.0",
            f"element vertex {self.num_cameras + self.num_points}",
            "property float x",
            "property float y",
            "property float z",
            "property uchar red",
            "property uchar green",
            "property uchar blue",
            "end_header",
        ]
        for camera in self.cameras:
            _, center = self.camera_to_angle_axis_and_center(camera)
            lines.append(" ".join(f"{float(c):g}" for c in center) + " 0 255 0")
        for point in self.points:
            lines.append("".join(f"{float(v):g} " for v in point) + " 255 255 255")
        Path(filename).write_text("\n".join(lines) + "\n", encoding="ascii")

    def camera_to_angle_axis_and_center(self, camera: Sequence[float]) -> tuple[np.ndarray, np.ndarray]:
        """Return the camera's angle-axis rotation and its centre ``c = -R^T t``."""
        cam = np.asarray(camera, dtype=float)
        if self.use_quaternions:
            angle_axis = quaternion_to_angle_axis(cam[:4])
        else:
            angle_axis = cam[:3].copy()
        size = self.camera_block_size
        translation = cam[size - 6: size - 3]
        center = -angle_axis_rotate_point(-angle_axis, translation)
        return angle_axis, center

    def angle_axis_and_center_to_camera(
        self, angle_axis: Sequence[float], center: Sequence[float]
    ) -> np.ndarray:
        """Return the rotation and translation parameters (``t = -R c``) of a camera.

        The result has ``camera_block_size - 3`` entries; the intrinsics are not included.
        """
        aa = np.asarray(angle_axis, dtype=float)
        rotation = angle_axis_to_quaternion(aa) if self.use_quaternions else aa.copy()
        translation = -angle_axis_rotate_point(aa, center)
        return np.concatenate([rotation, translation])

    def normalize(self) -> None:
        """Centre the points on their median and scale the median absolute deviation to 100."""
        points = self.points
        med = np.array([median(points[:, axis]) for axis in range(3)])
        mad = median(np.abs(points - med).sum(axis=1))
        scale = 100.0 / mad
        points[:] = scale * (points - med)
        for camera in self.cameras:
            angle_axis, center = self.camera_to_angle_axis_and_center(camera)
            camera[:-3] = self.angle_axis_and_center_to_camera(angle_axis, scale * (center - med))

    def perturb(
        self,
        rotation_sigma: float,
        translation_sigma: float,
        point_sigma: float,
        rng: Optional[random.Random] = None,
    ) -> None:
        """Add normal noise to points, camera rotations and camera translations."""
        for name, sigma in (
            ("point_sigma", point_sigma),
            ("rotation_sigma", rotation_sigma),
            ("translation_sigma", translation_sigma),
        ):
            if sigma < 0.0:
                raise ValueError(f"{name} must not be negative")
        if rng is None:
            rng = random.Random()

        if point_sigma > 0:
            for point in self.points:
                point[:] = perturb_point3(point_sigma, point, rng)

        size = self.camera_block_size
        for camera in self.cameras:
            angle_axis, center = self.camera_to_angle_axis_and_center(camera)
            if rotation_sigma > 0.0:
                angle_axis = perturb_point3(rotation_sigma, angle_axis, rng)
            camera[:-3] = self.angle_axis_and_center_to_camera(angle_axis, center)
            if translation_sigma > 0.0:
                translation = camera[size - 6: size - 3]
                translation[:] = perturb_point3(translation_sigma, translation, rng)