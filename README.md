# visodom

Building blocks for visual odometry in plain Python on top of NumPy,
SciPy and Pillow.

| Module | What it holds |
| --- | --- |
| `visodom.rotation` | `dot_product`, `cross_product`, `angle_axis_to_quaternion`, `quaternion_to_angle_axis` (quaternions are `(w, x, y, z)`), `angle_axis_rotate_point` |
| `visodom.rng` | `rand_double`, `rand_normal` (polar method); both take an optional `random.Random` |
| `visodom.lie` | `hat`, `so3_exp`, `so3_log` and the `SE3` pose with `identity`, `exp` (tangent vector ordered translation first, rotation second), composition `a @ b`, `transform`, `matrix`, `inverse` |
| `visodom.orb` | `load_gray`, FAST-9 corner detection `fast_detect`, rotated BRIEF descriptors `compute_orb` (keypoints within 16 pixels of the border get `None`), `hamming_distance`, brute-force matching `bf_match` returning `Match` objects |
| `visodom.matching` | `min_max_distance` and `filter_matches`, which keeps matches with distance at most `max(2 * min_distance, floor)` (floor 30 by default) |
| `visodom.epipolar` | eight-point `find_fundamental_8point`, `find_essential`, `decompose_essential`, `recover_pose`, `epipolar_constraint` |
| `visodom.triangulation` | `triangulate` normalised points seen from `[I|0]` and `[R|t]`, and `depth_color` for plotting |
| `visodom.pnp` | `project`, `reprojection_cost`, `pose_jacobian` and Gauss-Newton pose refinement `bundle_adjustment_gauss_newton` |
| `visodom.icp` | `pixel2cam`, `backproject` of depth pixels (raw depth divided by 5000 by default, `None` for zero depth), closed-form `icp_svd` and Levenberg-Marquardt `icp_bundle_adjustment` |
| `visodom.optical_flow` | bilinear `get_pixel_value`, `resize`, `build_pyramid`, Lucas-Kanade tracking `optical_flow_single_level` and coarse-to-fine `optical_flow_multi_level`, either forward or inverse |
| `visodom.direct_method` | `CameraIntrinsics`, `disparity_to_depth`, `accumulate_jacobian` (returns a `JacobianResult`), `direct_pose_estimation_single_layer` and `direct_pose_estimation_multi_layer` |
| `visodom.bal` | `BALProblem` for BAL datasets: `from_file`, `write_to_file`, `write_to_ply_file`, `normalize`, `perturb`; helpers `median` and `perturb_point3`; `BALFormatError` for malformed data |
| `visodom.reprojection` | the nine-parameter camera with radial distortion: `cam_projection_with_distortion` and the `SnavelyReprojectionError` residual |
| `visodom.bundle_adjustment` | `residuals` and `solve_ba`, a sparse least-squares solver with a Huber loss |

## Installation

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Command-line tools

Bundle adjustment of a BAL dataset. The problem is normalised, randomly
perturbed, written to `initial.ply`, solved and written to `final.ply`
in the current directory:

```
visodom-ba problem.txt
```

ORB feature extraction and matching between two images. The matches are
drawn side by side and saved to `matches.png`; without arguments the
images `./1.png` and `./2.png` are used:

```
visodom-orb 1.png 2.png
```

## Library use

Rotating a point given as an angle-axis vector:

```python
import numpy as np
from visodom.rotation import angle_axis_rotate_point, angle_axis_to_quaternion

aa = np.array([0.0, 0.0, np.pi / 2])
angle_axis_rotate_point(aa, np.array([1.0, 0.0, 0.0]))   # ~ [0, 1, 0]
angle_axis_to_quaternion(aa)                             # w, x, y, z
```

Composing rigid motions:

```python
import numpy as np
from visodom.lie import SE3

step = SE3.exp(np.array([0.1, 0.0, 0.0, 0.0, 0.0, 0.05]))
pose = step @ SE3.identity()
pose.matrix()          # 4x4 homogeneous matrix
pose.inverse() @ pose  # identity
```

Aligning two 3D point sets:

```python
from visodom.icp import icp_svd

R, t = icp_svd(pts1, pts2)   # pts1 ≈ R @ pts2 + t
```

Matching ORB features:

```python
from visodom.orb import load_gray, fast_detect, compute_orb, bf_match

img1, img2 = load_gray("1.png"), load_gray("2.png")
kp1, kp2 = fast_detect(img1, 40), fast_detect(img2, 40)
matches = bf_match(compute_orb(img1, kp1), compute_orb(img2, kp2))
```

Working with a BAL dataset:

```python
from visodom.bal import BALProblem
from visodom.bundle_adjustment import solve_ba

problem = BALProblem.from_file("problem.txt", False)
problem.normalize()
problem.write_to_ply_file("initial.ply")
solve_ba(problem, 40)
problem.write_to_ply_file("final.ply")
```

`solve_ba` needs cameras in angle-axis form; a problem loaded with
`use_quaternions=True` raises `ValueError`.

## What it does not do

- Only the two commands above exist. Two-view pose estimation, PnP, ICP,
  triangulation, optical flow and the direct method are library functions
  with no command of their own.
- Nothing is shown on screen; the only image the package writes is the
  `matches.png` of `visodom-orb`.
- Images are read only as 8-bit grayscale through `load_gray`; there is no
  reader for depth or disparity images, which the caller supplies as arrays.