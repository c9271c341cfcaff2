# slamkit

Small, readable building blocks for visual SLAM, written with NumPy and SciPy.
Images are plain 2D NumPy arrays of grey values; keypoints are `(x, y)` pixel
coordinates.

## Modules

- `slamkit.rotation`: `dot_product`, `cross_product`, `angle_axis_to_quaternion`,
  `quaternion_to_angle_axis` (quaternions as `[w, x, y, z]`) and
  `angle_axis_rotate_point` (Rodrigues' formula, first-order near zero).
- `slamkit.sampling`: `rand_double` and `rand_normal` (Marsaglia polar method),
  drawing from a given `random.Random` or the global generator.
- `slamkit.bal`: the `BALProblem` dataclass for *Bundle Adjustment in the Large*
  text files: `from_file` (optionally converting rotations to quaternions),
  `write_to_file`, `write_to_ply_file` (camera centres green, points white),
  `normalize` (median-centred, median absolute deviation scaled to 100),
  `perturb`, camera/point views, plus `median` and `perturb_point3`.
- `slamkit.reprojection`: `cam_projection_with_distortion` for the 9-parameter
  camera (angle-axis, translation, focal, k1, k2) and the
  `SnavelyReprojectionError` residual.
- `slamkit.curve_fitting`: fitting `y = exp(a x² + b x + c)`: `generate_data`,
  hand-written `gauss_newton`, and `fit_least_squares` using SciPy; both return
  a `CurveFitResult` (params, cost, iterations).
- `slamkit.se3`: `hat`, `so3_exp`, `so3_log`, and the `SE3` rigid transform with
  `exp` (twist with translation first), `act`, `inverse`, `matrix` and
  composition with `@`.
- `slamkit.pose_3d3d`: `pixel2cam`, closed-form ICP by SVD
  (`pose_estimation_3d3d`) and Levenberg-Marquardt pose refinement
  (`bundle_adjustment_3d3d`).
- `slamkit.pose_3d2d`: `projection_jacobian` and Gauss-Newton refinement of a
  camera pose from 3D-2D correspondences (`bundle_adjustment_gauss_newton`).
- `slamkit.triangulation`: `triangulate` pixel pairs seen by cameras `[I|0]` and
  `[R|t]` with intrinsics `K` (linear DLT), and `get_color` for depth plotting.
- `slamkit.orb`: `compute_orb` (oriented 256-bit BRIEF descriptors at given
  keypoints; keypoints within 16 pixels of the border get an empty
  descriptor), `hamming_distance`, `bf_match` and `filter_good_matches`,
  with `Match` results.
- `slamkit.optical_flow`: `get_pixel_value`, `resize_half`, `build_pyramid`,
  and Lucas-Kanade tracking, forward or inverse, in
  `optical_flow_single_level` and `optical_flow_multi_level` (four levels,
  scale one half).
- `slamkit.direct_method`: `Camera` intrinsics, `bilinear_pixel`,
  `JacobianAccumulator`, and photometric pose estimation in
  `direct_pose_estimation_single_layer` and
  `direct_pose_estimation_multi_layer`.
- `slamkit.bundle_adjustment`: `solve_ba` refines all cameras and points of an
  angle-axis `BALProblem` in place with a Huber-robust sparse least-squares
  solver and returns the SciPy result.

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Command line

Fit the curve model to generated noisy data and print the estimate:

```
slamkit-curve-fitting
slamkit-curve-fitting --method least-squares --points 100 --sigma 1.0 --seed 0
```

Run bundle adjustment on a BAL data file. The problem is normalised and
perturbed, written as `initial.ply` before solving and `final.ply` after:

```
slamkit-bundle-adjustment problem.txt
slamkit-bundle-adjustment problem.txt --seed 1 --max-iterations 40
```

## Library use

```python
import numpy as np
from slamkit.rotation import angle_axis_rotate_point, angle_axis_to_quaternion

aa = np.array([0.0, 0.0, np.pi / 2])
angle_axis_rotate_point(aa, [1.0, 0.0, 0.0])   # about [0, 1, 0]
angle_axis_to_quaternion(aa)                    # [w, x, y, z]
```

```python
from slamkit.bal import BALProblem
from slamkit.bundle_adjustment import solve_ba

problem = BALProblem.from_file("problem.txt")
problem.normalize()
solve_ba(problem, max_iterations=40)
problem.write_to_ply_file("final.ply")
problem.write_to_file("solved.txt")
```

```python
from slamkit.pose_3d3d import pose_estimation_3d3d

R, t = pose_estimation_3d3d(pts1, pts2)   # pts1 about R @ pts2 + t
```

## What it does not do

- It reads and writes no image files and draws or displays nothing; images
  come in as arrays.
- It has no keypoint detector: ORB descriptors, optical flow and the direct
  method all work on keypoints or pixels you supply.
- It does not estimate fundamental, essential or homography matrices or
  recover a pose from them, and has no closed-form PnP solver; poses come from
  ICP by SVD or from iterative refinement of a starting pose.
- `solve_ba` does not handle problems loaded with quaternion rotations.