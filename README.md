# slamkit

Building blocks for visual SLAM in Python and NumPy.

## What is inside

- **Lie groups** (`slamkit.lie`): `SO3` and `SE3` with `exp`, `log`,
  `inverse`, composition (`*`, also applied to points or `(N, 3)` arrays),
  `matrix()`, `SE3.matrix3x4()` and `SE3.adjoint()`; `hat`/`vee` for so(3),
  `hat_se3`/`vee_se3` for se(3), and `quaternion_to_matrix` /
  `matrix_to_quaternion`.
- **Rigid transforms** (`slamkit.transforms`): `angle_axis_matrix`,
  `euler_angles_zyx` (yaw, pitch, roll), `isometry`, `transform_point` and
  `relative_point`, which re-expresses a point seen by one camera in the frame
  of another.
- **Pinhole stereo camera** (`slamkit.camera`): `Camera` with `intrinsics()`
  and conversions `world2camera`, `camera2world`, `camera2pixel`,
  `pixel2camera`, `world2pixel`, `pixel2world`.
- **Triangulation** (`slamkit.algorithm`): `triangulate(poses, points)` solves
  a linear SVD triangulation from normalised-plane observations and returns
  `None` when the solution is poor; `to_vec2` converts a point to a 2-vector.
- **Curve fitting** (`slamkit.curve_fitting`): `generate_data`, `model`,
  `gauss_newton` and `levenberg_marquardt` for `y = exp(a·x² + b·x + c)`,
  returning a `FitResult` (params, cost, iterations, cost history).
- **Trajectories** (`slamkit.trajectory`): `parse_trajectory`,
  `read_trajectory` and `trajectory_rmse` between two trajectories.
- **Image undistortion** (`slamkit.undistort`): `Distortion` coefficients,
  `distort_normalized` and `undistort_image` (nearest-neighbour lookup).
- **Pose graphs** (`slamkit.pose_graph`): `read_g2o` reads `VERTEX_SE3:QUAT`
  and `EDGE_SE3:QUAT` records (vertex 0 is held fixed), `PoseGraph.optimize`
  runs Levenberg–Marquardt with left-multiplied Lie algebra updates, and
  `PoseGraph.write` writes the graph back in the same format.
- **Point clouds** (`slamkit.rgbd`): `read_poses`, `depth_to_points`
  (RGB-D back-projection to `x, y, z, r, g, b`), `disparity_to_points`
  (stereo disparity to `x, y, z, intensity`), `voxel_filter` and
  `statistical_outlier_removal`.
- **Dense monocular mapping** (`slamkit.dense_mapping`): epipolar search with
  NCC matching (`epipolar_search`, `ncc`, `bilinear`), depth triangulation
  with its uncertainty (`triangulate_depth`), a per-pixel Gaussian
  `DepthFilter`, `evaluate_depth` and `read_dataset_files`.
- **Stereo map core**:
  - `slamkit.entities`: `Frame`, `Feature` and `MapPoint`. Features refer to
    their frame and map point weakly; `Frame.create()` / `MapPoint.create()`
    hand out increasing ids and `Frame.set_keyframe()` a keyframe id.
  - `slamkit.slam_map`: `Map` holding all and active keyframes and landmarks.
    When the active window (7 keyframes by default) overflows, the keyframe
    closest to the current one is retired if it is nearer than 0.2, otherwise
    the farthest; unobserved landmarks are then deactivated.
  - `slamkit.config`: `Config.set_parameter_file` loads a YAML parameter file
    (OpenCV `%YAML` headers and `opencv-matrix` entries are accepted) and
    `Config.get(key, kind)` reads values from it.
  - `slamkit.dataset`: `Dataset` reads `calib.txt` of a KITTI-style sequence
    (`parse_calibration`) and returns stereo `Frame`s from
    `image_0/NNNNNN.png` and `image_1/NNNNNN.png` at half resolution.

## Installation

```
pip install slamkit
```

To run the test suite:

```
pip install "slamkit[test]"
pytest
```

## Using the library

```python
import numpy as np
from slamkit.lie import SO3, SE3, hat, vee
from slamkit.camera import Camera
from slamkit.algorithm import triangulate

# A rotation of 90 degrees about Z and its rotation vector
R = SO3.exp(np.array([0.0, 0.0, np.pi / 2]))
omega = R.log()
assert np.allclose(vee(hat(omega)), omega)

# A rigid motion from a quaternion (w, x, y, z) and a translation
T = SE3.from_quaternion(1.0, 0.0, 0.0, 0.0, np.array([1.0, 0.0, 0.0]))
print(T.matrix())

# Project a point with a pinhole camera
camera = Camera(718.856, 718.856, 607.1928, 185.2157, 0.573, SE3())
print(camera.camera2pixel(np.array([0.5, -0.2, 4.0])))

# Triangulate a point seen from two poses
point = np.array([1.0, 2.0, 10.0])
poses = [SE3(), SE3(None, np.array([-0.5, 0.0, 0.0]))]
observations = [(pose * point) / (pose * point)[2] for pose in poses]
print(triangulate(poses, observations))
```

## Command-line tools

| Command | What it does |
| --- | --- |
| `slamkit-hello` | Prints a greeting. |
| `slamkit-curve-fit` | Generates 100 noisy samples of `exp(x² + 2x + 1)` and fits them (`--method gauss-newton` or `lm`, `--seed`, `--iterations`). |
| `slamkit-trajectory` | Reads a ground-truth and an estimated trajectory (default `./example/groundtruth.txt` and `./example/estimated.txt`) and prints the RMSE. |
| `slamkit-undistort` | Undistorts a grayscale image (default `./distorted.png`) with built-in calibration and saves it (`--output`, default `undistorted.png`). |
| `slamkit-pose-graph` | Optimises a `.g2o` pose graph and writes the result (`--output`, default `result_lie.g2o`; `--iterations`, default 30). |
| `slamkit-rgbd` | Reads `pose.txt`, `color/<i>.png` and `depth/<i>.png` from a folder (default `./data`), fuses them into one filtered colour point cloud and saves it as ASCII PLY (`--output`, default `map.ply`). |
| `slamkit-dense-mapping` | Estimates the depth map of the first image of a monocular sequence with known poses and saves it (`--output`, default `depth.png`). |

Each command accepts `--help`, for example:

```
slamkit-curve-fit --help
slamkit-pose-graph --help
```

## What slamkit does not do

- It opens no windows: trajectories, point clouds, depth maps and matches are
  computed and saved, never displayed.
- There is no running visual odometry: the stereo map core provides frames,
  features, map points, the keyframe map, configuration and the dataset
  reader, but no feature detection, optical-flow tracking, pose estimation or
  background optimisation thread that would drive them.
- There is no stereo matcher: `disparity_to_points` expects a disparity map
  computed elsewhere.
- There are no bag-of-words vocabularies, loop-closure scoring, octree maps
  or surface meshing.

## Conventions

- Quaternions are given as `(w, x, y, z)`.
- Trajectory files hold one pose per line: `timestamp tx ty tz qx qy qz qw`.
- `SE3` tangent vectors put translation first and rotation last.
- `Frame.pose()` is the camera-from-world pose `T_c_w`.