import numpy as np
import pytest

from slamkit.direct_method import (
    Camera,
    JacobianAccumulator,
    bilinear_pixel,
    direct_pose_estimation_multi_layer,
    direct_pose_estimation_single_layer,
)
from slamkit.se3 import SE3


def _texture(rows, cols, shift=0.0, period=1.0):
    v, u = np.mgrid[0:rows, 0:cols].astype(float)
    u = u - shift
    return (
        128.0
        + 50.0 * np.sin(u / (6.0 * period))
        + 40.0 * np.cos(v / (7.0 * period))
        + 20.0 * np.sin((u + v) / (9.0 * period))
    )


def _grid(x_range, y_range):
    return np.array([(x, y) for x in x_range for y in y_range], dtype=float)


def test_bilinear_integer_position_returns_pixel():
    img = np.arange(12, dtype=float).reshape(3, 4)
    assert bilinear_pixel(img, 2, 1) == img[1, 2]


def test_bilinear_is_exact_on_linear_image():
    v, u = np.mgrid[0:5, 0:6].astype(float)
    img = u + 4.0 * v
    assert bilinear_pixel(img, 1.25, 1.5) == pytest.approx(1.25 + 4.0 * 1.5)


def test_bilinear_clamps_outside():
    img = np.arange(12, dtype=float).reshape(3, 4)
    assert bilinear_pixel(img, -3, -2) == img[0, 0]
    assert bilinear_pixel(img, 10, 10) == img[2, 3]


def test_camera_defaults_and_scaling():
    cam = Camera()
    assert cam.fx == 718.856
    half = cam.scaled(0.5)
    assert half.scaled(2.0) == pytest.approx(cam) or (
        half.scaled(2.0).fx == pytest.approx(cam.fx) and half.scaled(2.0).cy == pytest.approx(cam.cy)
    )
    assert half.cx == pytest.approx(cam.cx / 2)


def test_accumulate_identical_images_has_zero_cost():
    img = _texture(60, 80)
    camera = Camera(100.0, 100.0, 40.0, 30.0)
    px = _grid(range(15, 65, 10), range(15, 45, 10))
    acc = JacobianAccumulator(img, img, px, np.full(len(px), 10.0), camera)
    H, b, cost = acc.accumulate(SE3())
    assert cost == pytest.approx(0.0)
    assert np.allclose(b, 0.0)
    assert np.allclose(H, H.T)
    assert np.allclose(acc.projection, px)


def test_points_behind_camera_leave_pose_unchanged():
    img = _texture(60, 80)
    camera = Camera(100.0, 100.0, 40.0, 30.0)
    px = _grid(range(15, 65, 10), range(15, 45, 10))
    pose, projection = direct_pose_estimation_single_layer(
        img, img, px, np.full(len(px), -5.0), SE3(), camera
    )
    assert np.allclose(pose.matrix(), np.eye(4))
    assert np.allclose(projection, 0.0)


def test_length_mismatch_raises():
    img = _texture(20, 20)
    with pytest.raises(ValueError):
        JacobianAccumulator(img, img, [(5.0, 5.0), (6.0, 6.0)], [1.0])


def test_single_layer_tracks_horizontal_shift():
    img1 = _texture(60, 80)
    img2 = _texture(60, 80, shift=2.0)
    camera = Camera(100.0, 100.0, 40.0, 30.0)
    px = _grid(range(15, 65, 5), range(15, 45, 5))
    pose, projection = direct_pose_estimation_single_layer(
        img1, img2, px, np.full(len(px), 10.0), SE3(), camera
    )
    flow = projection - px
    assert np.allclose(flow.mean(axis=0), [2.0, 0.0], atol=0.2)


def test_multi_layer_tracks_horizontal_shift():
    img1 = _texture(120, 160, period=2.0)
    img2 = _texture(120, 160, shift=3.0, period=2.0)
    camera = Camera(150.0, 150.0, 80.0, 60.0)
    px = _grid(range(20, 140, 8), range(20, 100, 8))
    pose, projection = direct_pose_estimation_multi_layer(
        img1, img2, px, np.full(len(px), 10.0), SE3(), camera
    )
    flow = projection - px
    assert np.allclose(flow.mean(axis=0), [3.0, 0.0], atol=0.3)