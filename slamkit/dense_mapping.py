"""Dense monocular depth estimation along epipolar lines with NCC matching.

Each pixel of a reference image carries a Gaussian depth estimate (mean and
variance). New images with known poses refine it: the pixel is matched along
its epipolar line, its depth is triangulated, and the two Gaussians are fused.
"""

from __future__ import annotations

import argparse
import math
from collections.abc import Sequence
from pathlib import Path

import numpy as np

from slamkit.lie import SE3

BORDER = 20
WIDTH = 640
HEIGHT = 480
FX = 481.2
FY = -480.0
CX = 319.5
CY = 239.5
NCC_WINDOW_SIZE = 3
NCC_AREA = (2 * NCC_WINDOW_SIZE + 1) ** 2
MIN_COV = 0.1
MAX_COV = 10.0
NCC_THRESHOLD = 0.85
SEARCH_STEP = 0.7
MAX_HALF_LENGTH = 100.0
MIN_DEPTH = 0.1

TRAJECTORY_FILE = "first_200_frames_traj_over_table_input_sequence.txt"
REFERENCE_DEPTH_FILE = "depthmaps/scene_000.depth"

_OFFSETS = np.arange(-NCC_WINDOW_SIZE, NCC_WINDOW_SIZE + 1, dtype=float)
_DX, _DY = (g.reshape(-1) for g in np.meshgrid(_OFFSETS, _OFFSETS, indexing="ij"))


def px2cam(px) -> np.ndarray:
    """Pixel to a point on the normalised camera plane (z = 1)."""
    u, v = np.asarray(px, dtype=float).reshape(2)
    return np.array([(u - CX) / FX, (v - CY) / FY, 1.0])


def cam2px(p_cam) -> np.ndarray:
    """Camera-frame point to pixel."""
    x, y, z = np.asarray(p_cam, dtype=float).reshape(3)
    return np.array([x * FX / z + CX, y * FY / z + CY])


def _inside_mask(xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    return (xs >= BORDER) & (ys >= BORDER) & (xs + BORDER < WIDTH) & (ys + BORDER <= HEIGHT)


def inside(pt) -> bool:
    """Whether a pixel lies inside the image minus its border."""
    x, y = np.asarray(pt, dtype=float).reshape(2)
    return bool(_inside_mask(np.array(x), np.array(y)))


def _bilinear_many(image: np.ndarray, xs: np.ndarray, ys: np.ndarray) -> np.ndarray:
    x0 = np.trunc(xs).astype(int)
    y0 = np.trunc(ys).astype(int)
    xx = xs - np.floor(xs)
    yy = ys - np.floor(ys)
    img = image.astype(float, copy=False)
    return (
        (1 - xx) * (1 - yy) * img[y0, x0]
        + xx * (1 - yy) * img[y0, x0 + 1]
        + (1 - xx) * yy * img[y0 + 1, x0]
        + xx * yy * img[y0 + 1, x0 + 1]
    ) / 255.0


def bilinear(image, pt) -> float:
    """Bilinearly interpolated grey value in [0, 1] at a sub-pixel location."""
    img = np.asarray(image)
    if img.ndim != 2:
        raise ValueError("image must be a 2D grayscale array")
    x, y = np.asarray(pt, dtype=float).reshape(2)
    if x < 0 or y < 0 or int(x) + 1 >= img.shape[1] or int(y) + 1 >= img.shape[0]:
        raise ValueError("point is too close to the image edge for interpolation")
    return float(_bilinear_many(img, np.array(x), np.array(y)))


def _ncc_many(ref: np.ndarray, curr: np.ndarray, pt_ref, candidates: np.ndarray) -> np.ndarray:
    """Zero-mean NCC of the reference window against each candidate window."""
    rx, ry = np.asarray(pt_ref, dtype=float).reshape(2)
    ref_vals = ref[np.trunc(_DY + ry).astype(int), np.trunc(_DX + rx).astype(int)].astype(float) / 255.0
    xs = candidates[:, 0:1] + _DX[None, :]
    ys = candidates[:, 1:2] + _DY[None, :]
    curr_vals = _bilinear_many(curr, xs, ys)
    a = ref_vals - ref_vals.sum() / NCC_AREA
    b = curr_vals - curr_vals.sum(axis=1, keepdims=True) / NCC_AREA
    numerator = b @ a
    den_ref = float(a @ a)
    den_curr = np.sum(b * b, axis=1)
    return numerator / np.sqrt(den_ref * den_curr + 1e-10)


def ncc(ref, curr, pt_ref, pt_curr) -> float:
    """Zero-mean normalised cross-correlation of two 7x7 windows."""
    cand = np.asarray(pt_curr, dtype=float).reshape(1, 2)
    return float(_ncc_many(np.asarray(ref), np.asarray(curr), pt_ref, cand)[0])


def _search_offsets(half_length: float) -> np.ndarray:
    offsets = []
    step = -half_length
    while step <= half_length:
        offsets.append(step)
        step += SEARCH_STEP
    return np.array(offsets, dtype=float)


def epipolar_search(ref, curr, t_c_r: SE3, pt_ref, depth_mu: float, depth_cov: float):
    """Search the epipolar line of ``pt_ref`` in ``curr`` for the best NCC match.

    Returns ``(pt_curr, epipolar_direction)``, or None when no match scores
    high enough.
    """
    ref = np.asarray(ref)
    curr = np.asarray(curr)
    f_ref = px2cam(pt_ref)
    f_ref /= np.linalg.norm(f_ref)

    with np.errstate(divide="ignore", invalid="ignore"):
        px_mean_curr = cam2px(t_c_r * (f_ref * depth_mu))
        d_min = max(depth_mu - 3 * depth_cov, MIN_DEPTH)
        d_max = depth_mu + 3 * depth_cov
        px_min_curr = cam2px(t_c_r * (f_ref * d_min))
        px_max_curr = cam2px(t_c_r * (f_ref * d_max))

        epipolar_line = px_max_curr - px_min_curr
        length = float(np.linalg.norm(epipolar_line))
        direction = epipolar_line / length if length > 0 else epipolar_line.copy()
        half_length = min(0.5 * length, MAX_HALF_LENGTH)

        offsets = _search_offsets(half_length)
        if offsets.size == 0:
            return None
        candidates = px_mean_curr[None, :] + offsets[:, None] * direction[None, :]
    candidates = candidates[_inside_mask(candidates[:, 0], candidates[:, 1])]
    if len(candidates) == 0:
        return None
    scores = _ncc_many(ref, curr, pt_ref, candidates)
    best = int(np.argmax(scores))
    if scores[best] < NCC_THRESHOLD:
        return None
    return candidates[best].copy(), direction


def triangulate_depth(pt_ref, pt_curr, t_c_r: SE3, epipolar_direction):
    """Depth of ``pt_ref`` along its ray and the variance for one pixel of error.

    Returns ``(depth, variance)``; raises ValueError for degenerate geometry.
    """
    t_r_c = t_c_r.inverse()
    f_ref = px2cam(pt_ref)
    f_ref /= np.linalg.norm(f_ref)
    f_curr = px2cam(pt_curr)
    f_curr /= np.linalg.norm(f_curr)

    t = t_r_c.translation
    t_norm = float(np.linalg.norm(t))
    if t_norm == 0:
        raise ValueError("the two views have no baseline")
    f2 = t_r_c.rotation * f_curr
    b = np.array([t @ f_ref, t @ f2])
    a = np.array([[f_ref @ f_ref, -(f_ref @ f2)], [f_ref @ f2, -(f2 @ f2)]])
    try:
        ans = np.linalg.solve(a, b)
    except np.linalg.LinAlgError as exc:
        raise ValueError("rays are parallel; depth cannot be triangulated") from exc
    xm = ans[0] * f_ref
    xn = t + ans[1] * f2
    depth_estimation = float(np.linalg.norm((xm + xn) / 2.0))

    alpha = math.acos(float(np.clip(f_ref @ t / t_norm, -1.0, 1.0)))
    f_curr_prime = px2cam(np.asarray(pt_curr, dtype=float) + np.asarray(epipolar_direction, dtype=float))
    f_curr_prime /= np.linalg.norm(f_curr_prime)
    beta_prime = math.acos(float(np.clip(f_curr_prime @ (-t) / t_norm, -1.0, 1.0)))
    gamma = math.pi - alpha - beta_prime
    sin_gamma = math.sin(gamma)
    if sin_gamma == 0:
        raise ValueError("degenerate triangle in the uncertainty estimate")
    p_prime = t_norm * math.sin(beta_prime) / sin_gamma
    d_cov = p_prime - depth_estimation
    return depth_estimation, d_cov * d_cov


class DepthFilter:
    """Per-pixel Gaussian depth estimates of a reference image."""

    def __init__(self, init_depth: float = 3.0, init_cov2: float = 3.0):
        self.depth = np.full((HEIGHT, WIDTH), float(init_depth))
        self.depth_cov2 = np.full((HEIGHT, WIDTH), float(init_cov2))

    def update(self, ref, curr, t_c_r: SE3) -> int:
        """Refine every unconverged pixel with a new image; returns how many were updated."""
        ref = np.asarray(ref)
        curr = np.asarray(curr)
        region = self.depth_cov2[BORDER:HEIGHT - BORDER, BORDER:WIDTH - BORDER]
        active = (region >= MIN_COV) & (region <= MAX_COV)
        xs, ys = np.nonzero(active.T)
        updated = 0
        for x, y in zip(xs + BORDER, ys + BORDER):
            pt_ref = np.array([float(x), float(y)])
            found = epipolar_search(
                ref, curr, t_c_r, pt_ref, self.depth[y, x], math.sqrt(self.depth_cov2[y, x])
            )
            if found is None:
                continue
            pt_curr, direction = found
            try:
                self.update_pixel(pt_ref, pt_curr, t_c_r, direction)
            except ValueError:
                continue
            updated += 1
        return updated

    def update_pixel(self, pt_ref, pt_curr, t_c_r: SE3, epipolar_direction):
        """Fuse a triangulated depth into a pixel; returns the new (mean, variance)."""
        depth_estimation, d_cov2 = triangulate_depth(pt_ref, pt_curr, t_c_r, epipolar_direction)
        x, y = (int(c) for c in np.asarray(pt_ref, dtype=float).reshape(2))
        mu = self.depth[y, x]
        sigma2 = self.depth_cov2[y, x]
        total = sigma2 + d_cov2
        mu_fuse = (d_cov2 * mu + sigma2 * depth_estimation) / total
        sigma_fuse2 = (sigma2 * d_cov2) / total
        self.depth[y, x] = mu_fuse
        self.depth_cov2[y, x] = sigma_fuse2
        return float(mu_fuse), float(sigma_fuse2)


def evaluate_depth(depth_truth, depth_estimate):
    """Mean squared and mean depth error inside the border: ``(squared, mean)``."""
    truth = np.asarray(depth_truth, dtype=float)
    estimate = np.asarray(depth_estimate, dtype=float)
    if truth.shape != estimate.shape or truth.ndim != 2:
        raise ValueError("depth maps must be 2D arrays of the same shape")
    error = (truth - estimate)[BORDER:truth.shape[0] - BORDER, BORDER:truth.shape[1] - BORDER]
    if error.size == 0:
        raise ValueError("depth maps are too small for the border")
    return float(np.mean(error * error)), float(np.mean(error))


def read_dataset_files(path):
    """Read image paths, camera-to-world poses and the reference depth map.

    Returns ``(color_image_files, poses, ref_depth)``.
    """
    root = Path(path)
    trajectory = root / TRAJECTORY_FILE
    if not trajectory.is_file():
        raise FileNotFoundError(f"cannot find {trajectory}")
    files: list[str] = []
    poses: list[SE3] = []
    with trajectory.open(encoding="utf-8") as stream:
        for number, line in enumerate(stream, start=1):
            fields = line.split()
            if not fields:
                continue
            if len(fields) < 8:
                raise ValueError(f"line {number}: expected an image name and 7 values")
            try:
                tx, ty, tz, qx, qy, qz, qw = (float(f) for f in fields[1:8])
            except ValueError as exc:
                raise ValueError(f"line {number}: {exc}") from exc
            files.append(str(root / "images" / fields[0]))
            poses.append(SE3.from_quaternion(qw, qx, qy, qz, (tx, ty, tz)))

    depth_file = root / REFERENCE_DEPTH_FILE
    if not depth_file.is_file():
        raise FileNotFoundError(f"cannot find {depth_file}")
    values = np.zeros(HEIGHT * WIDTH)
    tokens = depth_file.read_text(encoding="utf-8").split()[: HEIGHT * WIDTH]
    try:
        values[: len(tokens)] = [float(t) for t in tokens]
    except ValueError as exc:
        raise ValueError(f"bad depth value: {exc}") from exc
    return files, poses, values.reshape(HEIGHT, WIDTH) / 100.0


def _load_gray(path: str):
    from PIL import Image

    try:
        with Image.open(path) as img:
            return np.asarray(img.convert("L"))
    except OSError:
        return None


def main(argv: Sequence[str] | None = None) -> int:
    """Estimate the reference depth map of a dataset and save it as depth.png."""
    from PIL import Image

    parser = argparse.ArgumentParser(description="Dense monocular depth estimation.")
    parser.add_argument("dataset", help="path to the test dataset")
    parser.add_argument("--output", default="depth.png")
    args = parser.parse_args(argv)

    try:
        files, poses, ref_depth = read_dataset_files(args.dataset)
    except (OSError, ValueError):
        print("Reading image files failed!")
        return -1
    print(f"read total {len(files)} files.")
    if not files:
        print("Reading image files failed!")
        return -1

    ref = _load_gray(files[0])
    if ref is None:
        print("Reading image files failed!")
        return -1
    pose_ref_twc = poses[0]
    depth_filter = DepthFilter(3.0, 3.0)

    for index in range(1, len(files)):
        print(f"*** loop {index} ***")
        curr = _load_gray(files[index])
        if curr is None:
            continue
        t_c_r = poses[index].inverse() * pose_ref_twc
        depth_filter.update(ref, curr, t_c_r)
        squared, mean = evaluate_depth(ref_depth, depth_filter.depth)
        print(f"Average squared error = {squared:g}, average error: {mean:g}")

    print("estimation returns, saving depth map ...")
    saved = np.clip(np.rint(depth_filter.depth), 0, 255).astype(np.uint8)
    Image.fromarray(saved).save(args.output)
    print("done.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())