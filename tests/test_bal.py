import random

import numpy as np
import pytest

from slamkit.bal import BALProblem, median, perturb_point3
from slamkit.reprojection import cam_projection_with_distortion

SAMPLE = """1 3 3
0 0 -10.5 20.25
0 1 3.0 -4.0
0 2 1.5 2.5
0.1
-0.2
0.3
1.0
2.0
3.0
500.0
0.01
0.001
1.0 2.0 -10.0
-1.0 0.5 -12.0
0.5 -0.5 -8.0
"""

ORIGINAL_CAMERA = [0.1, -0.2, 0.3, 1.0, 2.0, 3.0, 500.0, 0.01, 0.001]


@pytest.fixture
def sample_path(tmp_path):
    path = tmp_path / "problem.txt"
    path.write_text(SAMPLE)
    return path


def test_from_file_reads_header_and_observations(sample_path):
    problem = BALProblem.from_file(sample_path)
    assert (problem.num_cameras, problem.num_points, problem.num_observations) == (1, 3, 3)
    np.testing.assert_array_equal(problem.observations[0], [-10.5, 20.25])
    assert list(problem.point_index) == [0, 1, 2]
    assert list(problem.camera_index) == [0, 0, 0]
    assert problem.num_parameters == 18


def test_from_file_reads_parameters(sample_path):
    problem = BALProblem.from_file(sample_path)
    np.testing.assert_array_equal(problem.cameras[0], ORIGINAL_CAMERA)
    np.testing.assert_array_equal(problem.points[1], [-1.0, 0.5, -12.0])


def test_from_file_with_quaternions(sample_path):
    problem = BALProblem.from_file(sample_path, use_quaternions=True)
    assert problem.camera_block_size == 10
    assert problem.num_parameters == 19
    camera = problem.cameras[0]
    assert np.linalg.norm(camera[:4]) == pytest.approx(1.0)
    np.testing.assert_array_equal(camera[4:], ORIGINAL_CAMERA[3:])
    np.testing.assert_array_equal(problem.points[2], [0.5, -0.5, -8.0])


def test_write_to_file_round_trip(sample_path, tmp_path):
    problem = BALProblem.from_file(sample_path)
    out = tmp_path / "out.txt"
    problem.write_to_file(out)
    assert out.read_text().splitlines()[0] == "1 3 3"
    again = BALProblem.from_file(out)
    np.testing.assert_allclose(again.parameters, problem.parameters, rtol=1e-15)
    np.testing.assert_array_equal(again.observations, problem.observations)
    np.testing.assert_array_equal(again.point_index, problem.point_index)


def test_write_to_file_converts_quaternions_back(sample_path, tmp_path):
    problem = BALProblem.from_file(sample_path, use_quaternions=True)
    out = tmp_path / "out.txt"
    problem.write_to_file(out)
    again = BALProblem.from_file(out)
    np.testing.assert_allclose(again.cameras[0], ORIGINAL_CAMERA, atol=1e-12)


def test_write_to_ply_file(sample_path, tmp_path):
    problem = BALProblem.from_file(sample_path)
    out = tmp_path / "cloud.ply"
    problem.write_to_ply_file(out)
    lines = out.read_text().splitlines()
    assert lines[0] == "ply"
    assert lines[2] == "element vertex 4"
    assert lines[9] == "end_header"
    assert len(lines) == 14
    assert lines[10].endswith(" 0 255 0")
    assert lines[11] == "1 2 -10  255 255 255"


def test_center_round_trip(sample_path):
    for use_quaternions in (False, True):
        problem = BALProblem.from_file(sample_path, use_quaternions=use_quaternions)
        camera = problem.cameras[0]
        angle_axis, center = problem.camera_to_angle_axis_and_center(camera)
        rebuilt = problem.angle_axis_and_center_to_camera(angle_axis, center)
        np.testing.assert_allclose(rebuilt, camera[:-3], atol=1e-12)


def test_normalize_centres_and_scales(sample_path):
    problem = BALProblem.from_file(sample_path)
    problem.normalize()
    for axis in range(3):
        assert median(problem.points[:, axis]) == pytest.approx(0.0, abs=1e-9)
    assert median(np.abs(problem.points).sum(axis=1)) == pytest.approx(100.0)


def test_normalize_preserves_projections(sample_path):
    problem = BALProblem.from_file(sample_path)
    before = [cam_projection_with_distortion(problem.cameras[0], p) for p in problem.points]
    problem.normalize()
    after = [cam_projection_with_distortion(problem.cameras[0], p) for p in problem.points]
    np.testing.assert_allclose(after, before, rtol=1e-9)


def test_perturb_with_zero_sigma_keeps_problem(sample_path):
    problem = BALProblem.from_file(sample_path)
    original = problem.parameters.copy()
    problem.perturb(0.0, 0.0, 0.0, random.Random(3))
    np.testing.assert_allclose(problem.parameters, original, atol=1e-12)


def test_perturb_points_only(sample_path):
    problem = BALProblem.from_file(sample_path)
    cameras = problem.cameras.copy()
    points = problem.points.copy()
    problem.perturb(0.0, 0.0, 0.5, random.Random(3))
    np.testing.assert_allclose(problem.cameras, cameras, atol=1e-12)
    assert not np.allclose(problem.points, points)


def test_perturb_is_deterministic_with_seed(sample_path):
    a = BALProblem.from_file(sample_path)
    b = BALProblem.from_file(sample_path)
    a.perturb(0.1, 0.5, 0.5, random.Random(42))
    b.perturb(0.1, 0.5, 0.5, random.Random(42))
    np.testing.assert_array_equal(a.parameters, b.parameters)


def test_perturb_rejects_negative_sigma(sample_path):
    problem = BALProblem.from_file(sample_path)
    with pytest.raises(ValueError):
        problem.perturb(-0.1, 0.0, 0.0)
    with pytest.raises(ValueError):
        problem.perturb(0.0, 0.0, -1.0)


def test_observation_accessors_are_views(sample_path):
    problem = BALProblem.from_file(sample_path)
    np.testing.assert_array_equal(problem.point_for_observation(2), [0.5, -0.5, -8.0])
    problem.camera_for_observation(1)[6] = 250.0
    assert problem.cameras[0][6] == 250.0


def test_median_odd_and_even():
    assert median([3.0, 1.0, 2.0]) == 2.0
    assert median([4.0, 1.0, 3.0, 2.0]) == 3.0


def test_median_empty_raises():
    with pytest.raises(ValueError):
        median([])


def test_perturb_point3_zero_sigma_and_determinism():
    point = [1.0, 2.0, 3.0]
    np.testing.assert_array_equal(perturb_point3(0.0, point, random.Random(1)), point)
    a = perturb_point3(0.5, point, random.Random(9))
    b = perturb_point3(0.5, point, random.Random(9))
    np.testing.assert_array_equal(a, b)
    assert not np.allclose(a, point)


def test_truncated_file_raises(tmp_path):
    path = tmp_path / "bad.txt"
    path.write_text("1 3 3\n0 0 1.0\n")
    with pytest.raises(ValueError):
        BALProblem.from_file(path)


def test_non_numeric_file_raises(tmp_path):
    path = tmp_path / "bad.txt"
    path.write_text("one 3 3\n")
    with pytest.raises(ValueError):
        BALProblem.from_file(path)


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        BALProblem.from_file(tmp_path / "missing.txt")