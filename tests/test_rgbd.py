import io

import numpy as np
import pytest
from PIL import Image

from slamkit.lie import SE3
from slamkit.rgbd import (
    Intrinsics,
    depth_to_points,
    disparity_to_points,
    main,
    read_poses,
    statistical_outlier_removal,
    voxel_filter,
)

INTR = Intrinsics(2.0, 2.0, 1.0, 1.0)


def test_read_poses_parses_translation_and_rotation():
    text = "1 2 3 0 0 0 1\n4 5 6 0 0 1 0\n"
    poses = read_poses(io.StringIO(text), 2)
    assert np.allclose(poses[0].translation, [1, 2, 3])
    assert np.allclose(poses[0].rotation_matrix(), np.eye(3))
    assert np.allclose(poses[1].translation, [4, 5, 6])
    assert np.allclose(poses[1].rotation_matrix(), np.diag([-1.0, -1.0, 1.0]))


def test_read_poses_too_few_values():
    with pytest.raises(ValueError):
        read_poses(io.StringIO("1 2 3 0 0 0"), 1)


def test_depth_to_points_principal_point_and_color():
    depth = np.zeros((3, 3), dtype=np.uint16)
    depth[1, 1] = 2000
    color = np.zeros((3, 3, 3), dtype=np.uint8)
    color[1, 1] = (10, 20, 30)
    points = depth_to_points(color, depth, SE3(), INTR, 1000.0)
    assert points.shape == (1, 6)
    assert np.allclose(points[0, :3], [0.0, 0.0, 2.0])
    assert np.array_equal(points[0, 3:], [10, 20, 30])


def test_depth_to_points_skips_zero_and_keeps_row_order():
    depth = np.array([[0, 1000, 1000], [1000, 0, 1000]], dtype=np.uint16)
    color = np.zeros((2, 3, 3), dtype=np.uint8)
    points = depth_to_points(color, depth, SE3(), INTR, 1000.0)
    assert len(points) == 4
    assert np.all(points[:, 2] == 1.0)
    assert list(points[:, 1]) == sorted(points[:, 1])


def test_depth_to_points_translation_shifts_points():
    rng = np.random.default_rng(0)
    depth = rng.integers(0, 3000, size=(4, 5)).astype(np.uint16)
    color = rng.integers(0, 255, size=(4, 5, 3)).astype(np.uint8)
    base = depth_to_points(color, depth, SE3(), INTR, 1000.0)
    shifted = depth_to_points(color, depth, SE3(None, (1.0, 2.0, 3.0)), INTR, 1000.0)
    assert np.allclose(shifted[:, :3] - base[:, :3], [1.0, 2.0, 3.0])
    assert np.array_equal(shifted[:, 3:], base[:, 3:])


def test_depth_to_points_shape_mismatch():
    with pytest.raises(ValueError):
        depth_to_points(np.zeros((2, 2, 3)), np.zeros((3, 3)), SE3(), INTR, 1000.0)


def test_disparity_to_points_range_and_depth():
    gray = np.full((2, 3), 255, dtype=np.uint8)
    disparity = np.array([[0.0, 6.0, 96.0], [12.0, -1.0, 95.0]])
    points = disparity_to_points(gray, disparity, INTR, 3.0)
    assert len(points) == 3
    kept = disparity[(disparity > 0) & (disparity < 96)]
    assert np.allclose(points[:, 2] * kept, INTR.fx * 3.0)
    assert np.allclose(points[:, 3], 1.0)


def test_disparity_to_points_rejects_bad_baseline():
    with pytest.raises(ValueError):
        disparity_to_points(np.zeros((2, 2)), np.ones((2, 2)), INTR, 0.0)


def test_voxel_filter_merges_points_in_one_voxel():
    pts = np.array([[0.01, 0.01, 0.01, 0, 0, 0], [0.02, 0.02, 0.02, 10, 10, 10]])
    out = voxel_filter(pts, 0.1)
    assert out.shape == (1, 6)
    assert np.allclose(out[0], pts.mean(axis=0))


def test_voxel_filter_keeps_separate_voxels():
    pts = np.array([[0.0, 0.0, 0.0], [1.0, 0.0, 0.0], [0.0, 1.0, 0.0]])
    out = voxel_filter(pts, 0.5)
    assert len(out) == 3
    assert sorted(map(tuple, out)) == sorted(map(tuple, pts))


def test_voxel_filter_rejects_bad_resolution():
    with pytest.raises(ValueError):
        voxel_filter(np.zeros((2, 3)), 0.0)


def test_statistical_outlier_removal_drops_far_point():
    grid = np.array([[x * 0.01, y * 0.01, 0.0] for x in range(5) for y in range(4)])
    pts = np.vstack([grid, [[10.0, 10.0, 10.0]]])
    out = statistical_outlier_removal(pts, 5, 1.0)
    assert len(out) == 20
    assert not np.any(np.all(out == [10.0, 10.0, 10.0], axis=1))


def test_statistical_outlier_removal_rejects_bad_k():
    with pytest.raises(ValueError):
        statistical_outlier_removal(np.zeros((3, 3)), 0, 1.0)


def test_main_builds_map(tmp_path):
    (tmp_path / "pose.txt").write_text("0 0 0 0 0 0 1\n")
    (tmp_path / "color").mkdir()
    (tmp_path / "depth").mkdir()
    Image.fromarray(np.full((4, 4, 3), 100, dtype=np.uint8)).save(tmp_path / "color" / "1.png")
    depth = np.full((4, 4), 5000, dtype=np.uint16)
    depth[0, 0] = 0
    Image.fromarray(depth).save(tmp_path / "depth" / "1.png")
    output = tmp_path / "map.ply"
    code = main([str(tmp_path), "--count", "1", "--output", str(output),
                 "--resolution", "0.001", "--std-mul", "10"])
    assert code == 0
    text = output.read_text()
    assert "element vertex 15" in text
    assert text.strip().endswith("100 100 100")


def test_main_missing_pose_file(tmp_path):
    assert main([str(tmp_path)]) == 1