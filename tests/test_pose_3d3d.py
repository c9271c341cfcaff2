import numpy as np
import pytest

from slamkit.pose_3d3d import bundle_adjustment_3d3d, pixel2cam, pose_estimation_3d3d
from slamkit.se3 import SE3

K = np.array([[520.9, 0.0, 325.1], [0.0, 521.0, 249.7], [0.0, 0.0, 1.0]])


def _scene():
    rng = np.random.default_rng(4)
    pts2 = rng.uniform(-1.0, 1.0, size=(30, 3)) + np.array([0.0, 0.0, 3.0])
    truth = SE3.exp([0.1, -0.2, 0.3, 0.15, -0.1, 0.2])
    pts1 = pts2 @ truth.rotation.T + truth.translation
    return pts1, pts2, truth


def test_pixel2cam_principal_point_maps_to_origin():
    np.testing.assert_allclose(pixel2cam((325.1, 249.7), K), [0.0, 0.0])


def test_pixel2cam_inverts_projection():
    p = np.array([0.2, -0.1])
    pixel = (K[0, 0] * p[0] + K[0, 2], K[1, 1] * p[1] + K[1, 2])
    np.testing.assert_allclose(pixel2cam(pixel, K), p)


def test_svd_recovers_rigid_motion():
    pts1, pts2, truth = _scene()
    R, t = pose_estimation_3d3d(pts1, pts2)
    np.testing.assert_allclose(R, truth.rotation, atol=1e-9)
    np.testing.assert_allclose(t, truth.translation, atol=1e-9)


def test_svd_result_is_rotation():
    pts1, pts2, _ = _scene()
    R, _ = pose_estimation_3d3d(pts1, pts2)
    np.testing.assert_allclose(R @ R.T, np.eye(3), atol=1e-9)
    assert np.linalg.det(R) == pytest.approx(1.0)


def test_bundle_adjustment_recovers_rigid_motion():
    pts1, pts2, truth = _scene()
    pose = bundle_adjustment_3d3d(pts1, pts2)
    np.testing.assert_allclose(pose.rotation, truth.rotation, atol=1e-6)
    np.testing.assert_allclose(pose.translation, truth.translation, atol=1e-6)


def test_bundle_adjustment_agrees_with_svd():
    pts1, pts2, _ = _scene()
    R, t = pose_estimation_3d3d(pts1, pts2)
    pose = bundle_adjustment_3d3d(pts1, pts2, 20)
    np.testing.assert_allclose(pose.act(pts2[0]), R @ pts2[0] + t, atol=1e-6)


def test_empty_point_sets_raise():
    with pytest.raises(ValueError):
        pose_estimation_3d3d(np.zeros((0, 3)), np.zeros((0, 3)))


def test_mismatched_point_sets_raise():
    with pytest.raises(ValueError):
        bundle_adjustment_3d3d(np.zeros((3, 3)), np.zeros((4, 3)))