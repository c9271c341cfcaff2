"""Solving Bundle Adjustment in the Large problems with a robust sparse least-squares solver."""

from __future__ import annotations

import argparse
import random
import sys
from typing import Optional, Sequence

import numpy as np
from scipy.optimize import OptimizeResult, least_squares
from scipy.sparse import lil_matrix

from slamkit.bal import BALProblem

_EPSILON = sys.float_info.epsilon


def _rotate(angle_axis: np.ndarray, points: np.ndarray) -> np.ndarray:
    theta2 = np.sum(angle_axis * angle_axis, axis=1)
    big = theta2 > _EPSILON
    theta = np.sqrt(np.where(big, theta2, 1.0))
    w = angle_axis / theta[:, None]
    cos_t = np.cos(theta)[:, None]
    sin_t = np.sin(theta)[:, None]
    dot = np.sum(w * points, axis=1)[:, None]
    rodrigues = points * cos_t + np.cross(w, points) * sin_t + w * dot * (1.0 - cos_t)
    first_order = points + np.cross(angle_axis, points)
    return np.where(big[:, None], rodrigues, first_order)


def _project(cameras: np.ndarray, points: np.ndarray) -> np.ndarray:
    p = _rotate(cameras[:, :3], points) + cameras[:, 3:6]
    xp = -p[:, 0] / p[:, 2]
    yp = -p[:, 1] / p[:, 2]
    r2 = xp * xp + yp * yp
    distortion = 1.0 + r2 * (cameras[:, 7] + cameras[:, 8] * r2)
    scale = cameras[:, 6] * distortion
    return np.column_stack([scale * xp, scale * yp])


def _sparsity(problem: BALProblem) -> lil_matrix:
    n_obs = problem.num_observations
    cam_size = problem.camera_block_size
    pt_size = problem.point_block_size
    offset = cam_size * problem.num_cameras
    pattern = lil_matrix((2 * n_obs, problem.num_parameters), dtype=int)
    rows = np.arange(n_obs)
    for s in range(cam_size):
        cols = problem.camera_index * cam_size + s
        pattern[2 * rows, cols] = 1
        pattern[2 * rows + 1, cols] = 1
    for s in range(pt_size):
        cols = offset + problem.point_index * pt_size + s
        pattern[2 * rows, cols] = 1
        pattern[2 * rows + 1, cols] = 1
    return pattern


def solve_ba(problem: BALProblem, max_iterations: int = 40) -> OptimizeResult:
    """Minimize the Huber-robust reprojection error of ``problem`` in place.

    Camera and point parameters are refined together with numeric
    derivatives; the optimized parameters are written back into the problem.
    Returns the solver result.
    """
    if problem.use_quaternions:
        raise ValueError("only angle-axis cameras are supported")
    if max_iterations < 1:
        raise ValueError("max_iterations must be at least 1")
    if problem.num_observations == 0:
        raise ValueError("problem has no observations")
    if (
        problem.camera_index.min() < 0
        or problem.camera_index.max() >= problem.num_cameras
        or problem.point_index.min() < 0
        or problem.point_index.max() >= problem.num_points
    ):
        raise ValueError("observation refers to a camera or point that does not exist")

    n_cam_params = problem.camera_block_size * problem.num_cameras
    cam_idx = problem.camera_index
    pt_idx = problem.point_index
    observed = problem.observations

    def residuals(x: np.ndarray) -> np.ndarray:
        cameras = x[:n_cam_params].reshape(problem.num_cameras, problem.camera_block_size)
        points = x[n_cam_params:].reshape(problem.num_points, problem.point_block_size)
        return (_project(cameras[cam_idx], points[pt_idx]) - observed).ravel()

    result = least_squares(
        residuals,
        problem.parameters.copy(),
        jac_sparsity=_sparsity(problem),
        loss="huber",
        f_scale=1.0,
        x_scale="jac",
        method="trf",
        max_nfev=max_iterations,
    )
    problem.parameters[:] = result.x
    return result


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Load a BAL file, condition it, solve it and write initial and final PLY clouds."""
    parser = argparse.ArgumentParser(description="Bundle adjustment of a BAL dataset.")
    parser.add_argument("bal_file", help="BAL problem in text format")
    parser.add_argument("--seed", type=int, default=None, help="seed for the perturbation noise")
    parser.add_argument("--max-iterations", type=int, default=40)
    args = parser.parse_args(argv)

    try:
        problem = BALProblem.from_file(args.bal_file)
    except OSError as exc:
        print(f"Error: unable to open file {args.bal_file}: {exc}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    problem.normalize()
    problem.perturb(0.1, 0.5, 0.5, random.Random(args.seed))
    problem.write_to_ply_file("initial.ply")

    print("bal problem file loaded...")
    print(f"bal problem have {problem.num_cameras} cameras and {problem.num_points} points. ")
    print(f"Forming {problem.num_observations} observations. ")
    print("Solving BA ... ")
    result = solve_ba(problem, args.max_iterations)
    print(f"{result.message} final cost: {result.cost:g}")

    problem.write_to_ply_file("final.ply")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())