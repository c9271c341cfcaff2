import math

import numpy as np
import pytest

from slamkit.se3 import SE3, hat, so3_exp, so3_log


def test_hat_matches_cross_product():
    a = np.array([0.3, -1.2, 2.0])
    b = np.array([1.5, 0.4, -0.7])
    np.testing.assert_allclose(hat(a) @ b, np.cross(a, b))
    np.testing.assert_allclose(hat(a), -hat(a).T)


def test_so3_exp_quarter_turn_about_z():
    R = so3_exp([0.0, 0.0, math.pi / 2])
    np.testing.assert_allclose(R @ [1.0, 0.0, 0.0], [0.0, 1.0, 0.0], atol=1e-12)


def test_so3_exp_is_orthonormal():
    R = so3_exp([0.4, -0.8, 1.1])
    np.testing.assert_allclose(R @ R.T, np.eye(3), atol=1e-12)
    assert np.linalg.det(R) == pytest.approx(1.0)


def test_so3_log_round_trip():
    omega = np.array([0.2, -0.5, 0.9])
    np.testing.assert_allclose(so3_log(so3_exp(omega)), omega, atol=1e-12)


def test_exp_of_zero_is_identity():
    np.testing.assert_allclose(SE3.exp(np.zeros(6)).matrix(), np.eye(4))


def test_exp_pure_translation():
    T = SE3.exp([1.0, 2.0, 3.0, 0.0, 0.0, 0.0])
    np.testing.assert_allclose(T.translation, [1.0, 2.0, 3.0])
    np.testing.assert_allclose(T.rotation, np.eye(3))


def test_inverse_composes_to_identity():
    T = SE3.exp([0.1, -0.3, 0.7, 0.2, 0.4, -0.6])
    np.testing.assert_allclose((T @ T.inverse()).matrix(), np.eye(4), atol=1e-12)


def test_act_matches_homogeneous_matrix():
    T = SE3.exp([0.5, 0.1, -0.2, -0.3, 0.2, 0.1])
    p = np.array([1.0, -2.0, 0.5])
    expected = (T.matrix() @ np.append(p, 1.0))[:3]
    np.testing.assert_allclose(T.act(p), expected)


def test_exp_rejects_wrong_size():
    with pytest.raises(ValueError):
        SE3.exp([1.0, 2.0, 3.0])