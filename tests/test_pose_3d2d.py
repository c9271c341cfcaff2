import numpy as np
import pytest

from slamkit.pose_3d2d import bundle_adjustment_gauss_newton, projection_jacobian
from slamkit.se3 import SE3

K = np.array([[520.9, 0.0, 325.1], [0.0, 521.0, 249.7], [0.0, 0.0, 1.0]])


def _project(pose, pts):
    out = []
    for p in pts:
        pc = pose.act(p)
        out.append([K[0, 0] * pc[0] / pc[2] + K[0, 2], K[1, 1] * pc[1] / pc[2] + K[1, 2]])
    return np.array(out)


def _scene():
    rng = np.random.default_rng(3)
    pts = np.column_stack(
        [rng.uniform(-1, 1, 30), rng.uniform(-1, 1, 30), rng.uniform(3, 6, 30)]
    )
    true_pose = SE3.exp([0.05, -0.03, 0.1, 0.02, -0.04, 0.03])
    return pts, true_pose


def test_jacobian_matches_numeric_derivative():
    pc = np.array([0.3, -0.2, 2.5])
    fx, fy = K[0, 0], K[1, 1]

    def err(delta):
        q = SE3.exp(delta).act(pc)
        return -np.array([fx * q[0] / q[2], fy * q[1] / q[2]])

    h = 1e-6
    numeric = np.zeros((2, 6))
    for k in range(6):
        d = np.zeros(6)
        d[k] = h
        numeric[:, k] = (err(d) - err(-d)) / (2 * h)
    np.testing.assert_allclose(projection_jacobian(pc, fx, fy), numeric, rtol=1e-5, atol=1e-3)


def test_jacobian_shape_and_zero_entries():
    J = projection_jacobian([1.0, 2.0, 4.0], 500.0, 400.0)
    assert J.shape == (2, 6)
    assert J[0, 1] == 0.0
    assert J[1, 0] == 0.0


def test_recovers_true_pose():
    pts, true_pose = _scene()
    obs = _project(true_pose, pts)
    pose = bundle_adjustment_gauss_newton(pts, obs, K, SE3(), 10)
    np.testing.assert_allclose(pose.matrix(), true_pose.matrix(), atol=1e-6)


def test_default_pose_is_identity_start():
    pts, true_pose = _scene()
    obs = _project(true_pose, pts)
    pose = bundle_adjustment_gauss_newton(pts, obs, K)
    np.testing.assert_allclose(_project(pose, pts), obs, atol=1e-4)


def test_correct_pose_stays_put():
    pts, true_pose = _scene()
    obs = _project(true_pose, pts)
    pose = bundle_adjustment_gauss_newton(pts, obs, K, true_pose, 10)
    np.testing.assert_allclose(pose.matrix(), true_pose.matrix(), atol=1e-9)


def test_zero_iterations_returns_input():
    pts, true_pose = _scene()
    obs = _project(true_pose, pts)
    start = SE3.exp([0.1, 0, 0, 0, 0, 0])
    pose = bundle_adjustment_gauss_newton(pts, obs, K, start, 0)
    np.testing.assert_allclose(pose.matrix(), start.matrix())


def test_mismatched_lengths_raise():
    with pytest.raises(ValueError):
        bundle_adjustment_gauss_newton(np.zeros((3, 3)), np.zeros((2, 2)), K)


def test_empty_input_raises():
    with pytest.raises(ValueError):
        bundle_adjustment_gauss_newton(np.zeros((0, 3)), np.zeros((0, 2)), K)