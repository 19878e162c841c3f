import math

import numpy as np
import pytest

from slamkit.dense_mapping import (
    BORDER,
    FX,
    HEIGHT,
    WIDTH,
    DepthFilter,
    bilinear,
    cam2px,
    epipolar_search,
    evaluate_depth,
    inside,
    main,
    ncc,
    px2cam,
    read_dataset_files,
    triangulate_depth,
)
from slamkit.lie import SE3

SHIFT = 5
DEPTH = 3.0


def _texture(seed=1):
    rng = np.random.default_rng(seed)
    noise = rng.random((HEIGHT, WIDTH))
    kernel = np.ones(5) / 5.0
    noise = np.apply_along_axis(lambda r: np.convolve(r, kernel, mode="same"), 1, noise)
    noise = np.apply_along_axis(lambda c: np.convolve(c, kernel, mode="same"), 0, noise)
    noise = (noise - noise.min()) / (noise.max() - noise.min())
    return np.rint(noise * 255).astype(np.uint8)


def _shifted_pair():
    ref = _texture()
    curr = np.roll(ref, SHIFT, axis=1)
    t_c_r = SE3(translation=[SHIFT * DEPTH / FX, 0.0, 0.0])
    return ref, curr, t_c_r


def test_px2cam_cam2px_round_trip():
    px = np.array([100.25, 300.5])
    np.testing.assert_allclose(cam2px(px2cam(px)), px)
    np.testing.assert_allclose(cam2px(px2cam(px) * 4.0), px)
    assert px2cam(px)[2] == 1.0


@pytest.mark.parametrize(
    "pt, expected",
    [
        ((20, 20), True),
        ((19, 20), False),
        ((20, 19), False),
        ((619, 460), True),
        ((620, 300), False),
        ((300, 461), False),
    ],
)
def test_inside(pt, expected):
    assert inside(pt) is expected


def test_bilinear_on_integer_and_linear_image():
    ys, xs = np.mgrid[0:20, 0:20]
    image = (xs + 2 * ys).astype(np.uint8)
    assert bilinear(image, (3, 4)) == pytest.approx(image[4, 3] / 255.0)
    pt = (3.5, 4.25)
    assert bilinear(image, pt) == pytest.approx((pt[0] + 2 * pt[1]) / 255.0)


def test_bilinear_rejects_edge():
    with pytest.raises(ValueError):
        bilinear(np.zeros((10, 10)), (9.5, 2.0))


def test_ncc_identical_inverted_and_flat():
    ref = _texture()
    pt = (100.0, 100.0)
    assert ncc(ref, ref, pt, pt) == pytest.approx(1.0, abs=1e-6)
    assert ncc(ref, 255 - ref, pt, pt) == pytest.approx(-1.0, abs=1e-6)
    flat = np.full_like(ref, 80)
    assert ncc(ref, flat, pt, pt) == pytest.approx(0.0, abs=1e-9)


def test_epipolar_search_finds_shifted_match():
    ref, curr, t_c_r = _shifted_pair()
    found = epipolar_search(ref, curr, t_c_r, np.array([320.0, 240.0]), DEPTH, 1.0)
    assert found is not None
    pt_curr, direction = found
    assert abs(pt_curr[0] - (320 + SHIFT)) < 0.5
    assert pt_curr[1] == pytest.approx(240.0, abs=1e-6)
    assert np.linalg.norm(direction) == pytest.approx(1.0)


def test_epipolar_search_fails_on_flat_image():
    ref, _, t_c_r = _shifted_pair()
    flat = np.full_like(ref, 100)
    assert epipolar_search(ref, flat, t_c_r, np.array([320.0, 240.0]), DEPTH, 1.0) is None


def test_triangulate_depth_recovers_true_depth():
    pt_ref = np.array([300.0, 200.0])
    ray = px2cam(pt_ref)
    ray /= np.linalg.norm(ray)
    point = ray * DEPTH
    t_c_r = SE3(translation=[0.2, 0.0, 0.0])
    pt_curr = cam2px(t_c_r * point)
    depth, variance = triangulate_depth(pt_ref, pt_curr, t_c_r, np.array([1.0, 0.0]))
    assert depth == pytest.approx(DEPTH, rel=1e-6)
    assert variance > 0


def test_triangulate_depth_without_baseline_raises():
    with pytest.raises(ValueError):
        triangulate_depth(np.array([300.0, 200.0]), np.array([300.0, 200.0]), SE3(), np.array([1.0, 0.0]))


def test_update_pixel_fusion_narrows_variance():
    depth_filter = DepthFilter(2.0, 3.0)
    pt_ref = np.array([300.0, 200.0])
    ray = px2cam(pt_ref)
    ray /= np.linalg.norm(ray)
    t_c_r = SE3(translation=[0.2, 0.0, 0.0])
    pt_curr = cam2px(t_c_r * (ray * DEPTH))
    mu, sigma2 = depth_filter.update_pixel(pt_ref, pt_curr, t_c_r, np.array([1.0, 0.0]))
    assert 2.0 < mu < DEPTH
    assert sigma2 < 3.0
    assert depth_filter.depth[200, 300] == mu
    assert depth_filter.depth_cov2[200, 300] == sigma2


def test_update_skips_converged_pixels():
    ref, curr, t_c_r = _shifted_pair()
    depth_filter = DepthFilter(3.0, 0.05)
    assert depth_filter.update(ref, curr, t_c_r) == 0
    assert np.all(depth_filter.depth == 3.0)


def test_update_refines_active_patch():
    ref, curr, t_c_r = _shifted_pair()
    depth_filter = DepthFilter(DEPTH, 100.0)
    depth_filter.depth_cov2[238:243, 318:323] = 3.0
    updated = depth_filter.update(ref, curr, t_c_r)
    patch_cov = depth_filter.depth_cov2[238:243, 318:323]
    assert updated == int(np.count_nonzero(patch_cov != 3.0))
    assert updated > 0
    changed = patch_cov != 3.0
    assert np.all(patch_cov[changed] < 3.0)
    assert np.all(np.abs(depth_filter.depth[238:243, 318:323] - DEPTH) < 0.3)
    outside = np.ones((HEIGHT, WIDTH), dtype=bool)
    outside[238:243, 318:323] = False
    assert np.all(depth_filter.depth_cov2[outside] == 100.0)


def test_evaluate_depth_values():
    truth = np.full((HEIGHT, WIDTH), 2.0)
    assert evaluate_depth(truth, truth) == (0.0, 0.0)
    squared, mean = evaluate_depth(truth, truth - 0.5)
    assert squared == pytest.approx(0.25)
    assert mean == pytest.approx(0.5)


def test_evaluate_depth_ignores_border():
    truth = np.zeros((HEIGHT, WIDTH))
    estimate = np.zeros((HEIGHT, WIDTH))
    estimate[:BORDER, :] = 100.0
    estimate[:, -BORDER:] = 100.0
    assert evaluate_depth(truth, estimate) == (0.0, 0.0)


def test_evaluate_depth_shape_mismatch():
    with pytest.raises(ValueError):
        evaluate_depth(np.zeros((50, 50)), np.zeros((50, 40)))


def test_read_dataset_files(tmp_path):
    (tmp_path / "first_200_frames_traj_over_table_input_sequence.txt").write_text(
        "scene_000.png 1 2 3 0 0 0 1\nscene_001.png 0.5 0 0 0 0 0 1\n\n", encoding="utf-8"
    )
    (tmp_path / "depthmaps").mkdir()
    (tmp_path / "depthmaps" / "scene_000.depth").write_text(" ".join(["250"] * 10), encoding="utf-8")
    files, poses, ref_depth = read_dataset_files(tmp_path)
    assert files == [str(tmp_path / "images" / "scene_000.png"), str(tmp_path / "images" / "scene_001.png")]
    np.testing.assert_allclose(poses[0].translation, [1, 2, 3])
    np.testing.assert_allclose(poses[1].rotation_matrix(), np.eye(3))
    assert ref_depth.shape == (HEIGHT, WIDTH)
    np.testing.assert_allclose(ref_depth[0, :10], 2.5)
    assert ref_depth[0, 10] == 0.0
    assert math.isclose(float(ref_depth.sum()), 25.0)


def test_read_dataset_files_missing(tmp_path):
    with pytest.raises(FileNotFoundError):
        read_dataset_files(tmp_path)


def test_main_missing_dataset(tmp_path, capsys):
    assert main([str(tmp_path / "absent")]) == -1
    assert "Reading image files failed!" in capsys.readouterr().out