"""Lucas-Kanade sparse optical flow, single level and coarse-to-fine."""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)

HALF_PATCH_SIZE = 4
ITERATIONS = 10
PYRAMID_LEVELS = 4
PYRAMID_SCALE = 0.5
CONVERGENCE_NORM = 1e-2

_OFF_X, _OFF_Y = (
    grid.ravel().astype(float)
    for grid in np.meshgrid(
        np.arange(-HALF_PATCH_SIZE, HALF_PATCH_SIZE),
        np.arange(-HALF_PATCH_SIZE, HALF_PATCH_SIZE),
        indexing="ij",
    )
)


def _as_image(img) -> np.ndarray:
    image = np.asarray(img)
    if image.ndim != 2:
        raise ValueError("image must be a single-channel 2D array")
    if image.shape[0] < 2 or image.shape[1] < 2:
        raise ValueError("image must be at least 2x2 pixels")
    return image


def _bilinear(image: np.ndarray, xs, ys) -> np.ndarray:
    rows, cols = image.shape
    x = np.asarray(xs, dtype=float)
    y = np.asarray(ys, dtype=float)
    x = np.where(x < 0, 0.0, x)
    y = np.where(y < 0, 0.0, y)
    x = np.where(x >= cols - 1, float(cols - 2), x)
    y = np.where(y >= rows - 1, float(rows - 2), y)

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


def get_pixel_value(img, x: float, y: float) -> float:
    """Bilinearly interpolated grey value at ``(x, y)``, clamped to the image."""
    image = _as_image(img)
    return float(_bilinear(image, x, y))


def resize_half(img) -> np.ndarray:
    """Shrink an image to half size (truncated), averaging 2x2 blocks.

    Integer images are rounded back to their own type; float images stay float.
    """
    image = _as_image(img)
    rows, cols = image.shape[0] // 2, image.shape[1] // 2
    block = image[: 2 * rows, : 2 * cols].astype(float)
    averaged = block.reshape(rows, 2, cols, 2).mean(axis=(1, 3))
    if np.issubdtype(image.dtype, np.integer):
        info = np.iinfo(image.dtype)
        return np.clip(np.rint(averaged), info.min, info.max).astype(image.dtype)
    return averaged.astype(image.dtype)


def build_pyramid(img, levels: int = PYRAMID_LEVELS) -> list[np.ndarray]:
    """Image pyramid, finest level first, each level half the previous one."""
    if levels < 1:
        raise ValueError("levels must be at least 1")
    pyramid = [_as_image(img)]
    for _ in range(levels - 1):
        pyramid.append(resize_half(pyramid[-1]))
    return pyramid


def _track_point(
    img1: np.ndarray,
    img2: np.ndarray,
    px: float,
    py: float,
    dx: float,
    dy: float,
    inverse: bool,
) -> tuple[float, float, bool]:
    xs = px + _OFF_X
    ys = py + _OFF_Y
    reference = _bilinear(img1, xs, ys)

    H = np.zeros((2, 2))
    J = np.zeros((len(xs), 2))
    if inverse:
        # The Jacobian of the reference patch does not change while dx, dy move.
        J = -0.5 * np.column_stack(
            [
                _bilinear(img1, xs + 1, ys) - _bilinear(img1, xs - 1, ys),
                _bilinear(img1, xs, ys + 1) - _bilinear(img1, xs, ys - 1),
            ]
        )
        H = J.T @ J

    last_cost = 0.0
    succeeded = True
    for it in range(ITERATIONS):
        cx = xs + dx
        cy = ys + dy
        error = reference - _bilinear(img2, cx, cy)
        if not inverse:
            J = -0.5 * np.column_stack(
                [
                    _bilinear(img2, cx + 1, cy) - _bilinear(img2, cx - 1, cy),
                    _bilinear(img2, cx, cy + 1) - _bilinear(img2, cx, cy - 1),
                ]
            )
            H = J.T @ J
        b = -(J.T @ error)
        cost = float(error @ error)

        try:
            update = np.linalg.solve(H, b)
        except np.linalg.LinAlgError:
            update = np.full(2, np.nan)
        if np.isnan(update[0]):
            logger.debug("update is nan")
            succeeded = False
            break
        if it > 0 and cost > last_cost:
            break

        dx += float(update[0])
        dy += float(update[1])
        last_cost = cost
        succeeded = True
        if float(np.linalg.norm(update)) < CONVERGENCE_NORM:
            break
    return dx, dy, succeeded


def optical_flow_single_level(
    img1,
    img2,
    kp1,
    kp2=None,
    inverse: bool = False,
    has_initial: bool = False,
) -> tuple[np.ndarray, list[bool]]:
    """Track ``(x, y)`` keypoints of ``img1`` into ``img2`` with Gauss-Newton.

    With ``has_initial`` the positions in ``kp2`` are the starting guesses.
    Returns the tracked positions and a success flag per keypoint.
    """
    image1 = _as_image(img1)
    image2 = _as_image(img2)
    points1 = np.asarray(kp1, dtype=float).reshape(-1, 2)
    if has_initial:
        if kp2 is None:
            raise ValueError("has_initial requires kp2")
        guesses = np.asarray(kp2, dtype=float).reshape(-1, 2)
        if guesses.shape != points1.shape:
            raise ValueError("kp1 and kp2 must have the same length")
    else:
        guesses = points1

    tracked = np.empty_like(points1)
    success: list[bool] = []
    for i, ((px, py), (gx, gy)) in enumerate(zip(points1, guesses)):
        dx, dy = (gx - px, gy - py) if has_initial else (0.0, 0.0)
        dx, dy, ok = _track_point(image1, image2, px, py, dx, dy, inverse)
        tracked[i] = (px + dx, py + dy)
        success.append(ok)
    return tracked, success


def optical_flow_multi_level(
    img1, img2, kp1, inverse: bool = False
) -> tuple[np.ndarray, list[bool]]:
    """Coarse-to-fine tracking over a four-level pyramid of scale one half."""
    pyr1 = build_pyramid(img1, PYRAMID_LEVELS)
    pyr2 = build_pyramid(img2, PYRAMID_LEVELS)
    top_scale = PYRAMID_SCALE ** (PYRAMID_LEVELS - 1)

    kp1_pyr = np.asarray(kp1, dtype=float).reshape(-1, 2) * top_scale
    kp2_pyr = kp1_pyr.copy()
    success: list[bool] = []
    for level in range(PYRAMID_LEVELS - 1, -1, -1):
        kp2_pyr, success = optical_flow_single_level(
            pyr1[level], pyr2[level], kp1_pyr, kp2_pyr, inverse, True
        )
        logger.debug("tracked pyramid level %d", level)
        if level > 0:
            kp1_pyr = kp1_pyr / PYRAMID_SCALE
            kp2_pyr = kp2_pyr / PYRAMID_SCALE
    return kp2_pyr, success