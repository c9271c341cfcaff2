"""Direct (photometric) camera pose estimation from sparse pixels with known depth."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np

from slamkit.optical_flow import build_pyramid
from slamkit.se3 import SE3

logger = logging.getLogger(__name__)

HALF_PATCH_SIZE = 1
ITERATIONS = 10
PYRAMID_LEVELS = 4
PYRAMID_SCALE = 0.5
CONVERGENCE_NORM = 1e-3

_OFF_X, _OFF_Y = (
    grid.ravel().astype(float)
    for grid in np.meshgrid(
        np.arange(-HALF_PATCH_SIZE, HALF_PATCH_SIZE + 1),
        np.arange(-HALF_PATCH_SIZE, HALF_PATCH_SIZE + 1),
        indexing="ij",
    )
)


@dataclass(frozen=True)
class Camera:
    """Pinhole intrinsics."""

    fx: float = 718.856
    fy: float = 718.856
    cx: float = 607.1928
    cy: float = 185.2157

    def scaled(self, scale: float) -> "Camera":
        """Intrinsics of the same camera on an image resized by ``scale``."""
        return Camera(self.fx * scale, self.fy * scale, self.cx * scale, self.cy * scale)


def _as_image(img) -> np.ndarray:
    image = np.asarray(img)
    if image.ndim != 2 or image.size == 0:
        raise ValueError("image must be a non-empty single-channel 2D array")
    return image


def _bilinear(image: np.ndarray, xs, ys) -> np.ndarray:
    rows, cols = image.shape
    x = np.asarray(xs, dtype=float)
    y = np.asarray(ys, dtype=float)
    x = np.where(x < 0, 0.0, x)
    y = np.where(y < 0, 0.0, y)
    x = np.where(x >= cols, float(cols - 1), x)
    y = np.where(y >= rows, float(rows - 1), y)

    x0 = np.floor(x).astype(int)
    y0 = np.floor(y).astype(int)
    xx = x - x0
    yy = y - y0
    x1 = np.minimum(cols - 1, x0 + 1)
    y1 = np.minimum(rows - 1, y0 + 1)

    data = image.astype(float, copy=False)
    return (
        (1 - xx) * (1 - yy) * data[y0, x0]
        + xx * (1 - yy) * data[y0, x1]
        + (1 - xx) * yy * data[y1, x0]
        + xx * yy * data[y1, x1]
    )


def bilinear_pixel(img, x: float, y: float) -> float:
    """Bilinearly interpolated grey value at ``(x, y)``, clamped to the image."""
    return float(_bilinear(_as_image(img), x, y))


class JacobianAccumulator:
    """Builds the normal equations of the photometric error for a pose."""

    def __init__(self, img1, img2, px_ref, depth_ref, camera: Optional[Camera] = None) -> None:
        self.img1 = _as_image(img1)
        self.img2 = _as_image(img2)
        self.px_ref = np.asarray(px_ref, dtype=float).reshape(-1, 2)
        self.depth_ref = np.asarray(depth_ref, dtype=float).ravel()
        if len(self.px_ref) != len(self.depth_ref):
            raise ValueError("px_ref and depth_ref must have the same length")
        self.camera = Camera() if camera is None else camera
        self.projection = np.zeros_like(self.px_ref)

    def accumulate(self, T21: SE3) -> tuple[np.ndarray, np.ndarray, float]:
        """Return the Hessian, bias and mean patch cost for pose ``T21``.

        Pixels that project in front of the camera and inside the image also
        have their projected position stored in ``projection``.
        """
        cam = self.camera
        hessian = np.zeros((6, 6))
        bias = np.zeros(6)
        if len(self.px_ref) == 0:
            return hessian, bias, 0.0

        px = self.px_ref
        rays = np.column_stack([(px[:, 0] - cam.cx) / cam.fx, (px[:, 1] - cam.cy) / cam.fy, np.ones(len(px))])
        point_ref = self.depth_ref[:, None] * rays
        point_cur = point_ref @ T21.rotation.T + T21.translation
        X, Y, Z = point_cur.T

        rows, cols = self.img2.shape
        h = HALF_PATCH_SIZE
        with np.errstate(divide="ignore", invalid="ignore"):
            u = cam.fx * X / Z + cam.cx
            v = cam.fy * Y / Z + cam.cy
        good = (
            (Z >= 0)
            & np.isfinite(u)
            & np.isfinite(v)
            & (u >= h)
            & (u <= cols - h)
            & (v >= h)
            & (v <= rows - h)
        )
        count = int(good.sum())
        if count == 0:
            return hessian, bias, 0.0

        u, v = u[good], v[good]
        self.projection[good] = np.column_stack([u, v])
        X, Y, Z = X[good], Y[good], Z[good]
        z_inv = 1.0 / Z
        z2_inv = z_inv * z_inv
        zeros = np.zeros_like(Z)

        j_pixel = np.stack(
            [
                np.column_stack(
                    [
                        cam.fx * z_inv,
                        zeros,
                        -cam.fx * X * z2_inv,
                        -cam.fx * X * Y * z2_inv,
                        cam.fx + cam.fx * X * X * z2_inv,
                        -cam.fx * Y * z_inv,
                    ]
                ),
                np.column_stack(
                    [
                        zeros,
                        cam.fy * z_inv,
                        -cam.fy * Y * z2_inv,
                        -cam.fy - cam.fy * Y * Y * z2_inv,
                        cam.fy * X * Y * z2_inv,
                        cam.fy * X * z_inv,
                    ]
                ),
            ],
            axis=1,
        )

        ref_x = px[good, 0][:, None] + _OFF_X
        ref_y = px[good, 1][:, None] + _OFF_Y
        cur_x = u[:, None] + _OFF_X
        cur_y = v[:, None] + _OFF_Y

        error = _bilinear(self.img1, ref_x, ref_y) - _bilinear(self.img2, cur_x, cur_y)
        grad_x = 0.5 * (_bilinear(self.img2, cur_x + 1, cur_y) - _bilinear(self.img2, cur_x - 1, cur_y))
        grad_y = 0.5 * (_bilinear(self.img2, cur_x, cur_y + 1) - _bilinear(self.img2, cur_x, cur_y - 1))

        jac = -(grad_x[..., None] * j_pixel[:, None, 0, :] + grad_y[..., None] * j_pixel[:, None, 1, :])
        jac = jac.reshape(-1, 6)
        err = error.ravel()

        hessian = jac.T @ jac
        bias = -(jac.T @ err)
        cost = float(err @ err) / count
        return hessian, bias, cost


def direct_pose_estimation_single_layer(
    img1,
    img2,
    px_ref,
    depth_ref,
    T21: Optional[SE3] = None,
    camera: Optional[Camera] = None,
) -> tuple[SE3, np.ndarray]:
    """Refine ``T21`` by Gauss-Newton on the photometric error of one image pair.

    Returns the pose and the projected positions of the reference pixels
    (zero where a pixel never projected inside the image).
    """
    accumulator = JacobianAccumulator(img1, img2, px_ref, depth_ref, camera)
    pose = SE3() if T21 is None else T21

    last_cost = 0.0
    for it in range(ITERATIONS):
        H, b, cost = accumulator.accumulate(pose)
        try:
            update = np.linalg.solve(H, b)
        except np.linalg.LinAlgError:
            update = np.full(6, np.nan)
        if np.isnan(update[0]):
            # A flat patch leaves H singular.
            logger.info("update is nan")
            break
        pose = SE3.exp(update) @ pose
        if it > 0 and cost > last_cost:
            logger.info("cost increased: %g, %g", cost, last_cost)
            break
        if float(np.linalg.norm(update)) < CONVERGENCE_NORM:
            break
        last_cost = cost
        logger.debug("iteration: %d, cost: %g", it, cost)

    logger.debug("T21 =\n%s", pose.matrix())
    return pose, accumulator.projection.copy()


def direct_pose_estimation_multi_layer(
    img1,
    img2,
    px_ref,
    depth_ref,
    T21: Optional[SE3] = None,
    camera: Optional[Camera] = None,
) -> tuple[SE3, np.ndarray]:
    """Coarse-to-fine direct pose estimation over a four-level pyramid of scale one half."""
    cam = Camera() if camera is None else camera
    pixels = np.asarray(px_ref, dtype=float).reshape(-1, 2)
    pyr1 = build_pyramid(img1, PYRAMID_LEVELS)
    pyr2 = build_pyramid(img2, PYRAMID_LEVELS)

    pose = SE3() if T21 is None else T21
    projection = np.zeros_like(pixels)
    for level in range(PYRAMID_LEVELS - 1, -1, -1):
        scale = PYRAMID_SCALE ** level
        pose, projection = direct_pose_estimation_single_layer(
            pyr1[level], pyr2[level], pixels * scale, depth_ref, pose, cam.scaled(scale)
        )
    return pose, projection