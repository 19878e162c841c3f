"""Point clouds from RGB-D and stereo images, with voxel and outlier filters."""

from __future__ import annotations

import argparse
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from slamkit.lie import SE3

MAX_DISPARITY = 96.0


@dataclass(frozen=True)
class Intrinsics:
    """Pinhole intrinsics."""

    fx: float
    fy: float
    cx: float
    cy: float


DEFAULT_INTRINSICS = Intrinsics(481.2, -480.0, 319.5, 239.5)
DEFAULT_DEPTH_SCALE = 5000.0
DEFAULT_RESOLUTION = 0.03
DEFAULT_MEAN_K = 50
DEFAULT_STD_MUL = 1.0


def read_poses(stream, count: int) -> list[SE3]:
    """Read ``count`` poses of 'tx ty tz qx qy qz qw' from a text stream."""
    if count < 0:
        raise ValueError("count must not be negative")
    text = stream.read() if hasattr(stream, "read") else "".join(stream)
    try:
        values = [float(token) for token in text.split()]
    except ValueError as exc:
        raise ValueError(f"bad pose value: {exc}") from exc
    needed = 7 * count
    if len(values) < needed:
        raise ValueError(f"expected {needed} pose values, got {len(values)}")
    data = np.array(values[:needed]).reshape(count, 7)
    return [SE3.from_quaternion(qw, qx, qy, qz, (tx, ty, tz)) for tx, ty, tz, qx, qy, qz, qw in data]


def depth_to_points(color, depth, pose: SE3, intrinsics: Intrinsics, depth_scale: float) -> np.ndarray:
    """World points (x, y, z, r, g, b) of every pixel with non-zero depth, row by row.

    ``color`` is an (H, W, 3) RGB array and ``depth`` an (H, W) array of raw depth.
    """
    color = np.asarray(color)
    depth = np.asarray(depth)
    if depth.ndim != 2:
        raise ValueError("depth must be a 2D array")
    if color.ndim != 3 or color.shape[:2] != depth.shape or color.shape[2] < 3:
        raise ValueError("color must be an (H, W, 3) array matching depth")
    if depth_scale <= 0:
        raise ValueError("depth_scale must be positive")
    v, u = np.nonzero(depth)
    z = depth[v, u].astype(float) / depth_scale
    x = (u - intrinsics.cx) * z / intrinsics.fx
    y = (v - intrinsics.cy) * z / intrinsics.fy
    world = pose * np.column_stack([x, y, z])
    rgb = color[v, u, :3].astype(float)
    return np.column_stack([world, rgb]).reshape(-1, 6)


def disparity_to_points(gray, disparity, intrinsics: Intrinsics, baseline: float) -> np.ndarray:
    """Points (x, y, z, intensity) from a disparity map; intensity is in [0, 1].

    Disparities outside the open range (0, 96) are skipped.
    """
    gray = np.asarray(gray)
    disp = np.asarray(disparity, dtype=float)
    if gray.ndim != 2 or disp.shape != gray.shape:
        raise ValueError("gray and disparity must be 2D arrays of the same shape")
    if baseline <= 0:
        raise ValueError("baseline must be positive")
    v, u = np.nonzero((disp > 0.0) & (disp < MAX_DISPARITY))
    depth = intrinsics.fx * baseline / disp[v, u]
    x = (u - intrinsics.cx) / intrinsics.fx * depth
    y = (v - intrinsics.cy) / intrinsics.fy * depth
    intensity = gray[v, u].astype(float) / 255.0
    return np.column_stack([x, y, depth, intensity]).reshape(-1, 4)


def _cloud(points) -> np.ndarray:
    pts = np.asarray(points, dtype=float)
    if pts.ndim != 2 or pts.shape[1] < 3:
        raise ValueError("points must be an (N, >=3) array")
    return pts


def voxel_filter(points, resolution: float) -> np.ndarray:
    """Replace the points in each cubic voxel by their centroid (all columns averaged)."""
    pts = _cloud(points)
    if resolution <= 0:
        raise ValueError("resolution must be positive")
    if len(pts) == 0:
        return pts.copy()
    keys = np.floor(pts[:, :3] / resolution).astype(np.int64)
    _, inverse, counts = np.unique(keys, axis=0, return_inverse=True, return_counts=True)
    inverse = inverse.reshape(-1)
    sums = np.zeros((len(counts), pts.shape[1]))
    np.add.at(sums, inverse, pts)
    return sums / counts[:, None]


def statistical_outlier_removal(points, mean_k: int = DEFAULT_MEAN_K, std_mul: float = DEFAULT_STD_MUL) -> np.ndarray:
    """Drop points whose mean distance to their k nearest neighbours exceeds
    the global mean of those distances by more than ``std_mul`` deviations."""
    pts = _cloud(points)
    if mean_k < 1:
        raise ValueError("mean_k must be at least 1")
    n = len(pts)
    if n < 2:
        return pts.copy()
    k = min(mean_k, n - 1)
    xyz = pts[:, :3]
    sq_norms = np.einsum("ij,ij->i", xyz, xyz)
    chunk = max(1, 2_000_000 // n)
    mean_dist = np.empty(n)
    for start in range(0, n, chunk):
        block = xyz[start:start + chunk]
        d2 = sq_norms[start:start + chunk, None] + sq_norms[None, :] - 2.0 * block @ xyz.T
        np.maximum(d2, 0.0, out=d2)
        nearest = np.partition(d2, k, axis=1)[:, :k + 1]
        # The k + 1 smallest distances include the point itself at zero.
        mean_dist[start:start + chunk] = np.sqrt(nearest).sum(axis=1) / k
    mean = float(mean_dist.mean())
    stddev = float(np.sqrt(max(float(mean_dist.var(ddof=1)), 0.0)))
    return pts[mean_dist <= mean + std_mul * stddev]


def _write_ply(path, cloud: np.ndarray) -> None:
    colors = np.clip(np.rint(cloud[:, 3:6]), 0, 255).astype(int)
    with open(path, "w", encoding="ascii") as stream:
        stream.write("ply\nformat ascii 1.0\n")
        stream.write(f"element vertex {len(cloud)}\n")
        for name in ("x", "y", "z"):
            stream.write(f"property float {name}\n")
        for name in ("red", "green", "blue"):
            stream.write(f"property uchar {name}\n")
        stream.write("end_header\n")
        for (x, y, z), (r, g, b) in zip(cloud[:, :3], colors):
            stream.write(f"{x:.6g} {y:.6g} {z:.6g} {r} {g} {b}\n")


def main(argv: Sequence[str] | None = None) -> int:
    """Fuse RGB-D frames into one filtered colour point cloud saved as PLY."""
    from PIL import Image

    parser = argparse.ArgumentParser(description="Build a point cloud map from RGB-D frames.")
    parser.add_argument("directory", nargs="?", default="./data",
                        help="folder with pose.txt, color/<i>.png and depth/<i>.png")
    parser.add_argument("--count", type=int, default=5)
    parser.add_argument("--output", default="map.ply")
    parser.add_argument("--resolution", type=float, default=DEFAULT_RESOLUTION)
    parser.add_argument("--depth-scale", type=float, default=DEFAULT_DEPTH_SCALE)
    parser.add_argument("--mean-k", type=int, default=DEFAULT_MEAN_K)
    parser.add_argument("--std-mul", type=float, default=DEFAULT_STD_MUL)
    args = parser.parse_args(argv)

    root = Path(args.directory)
    pose_file = root / "pose.txt"
    if not pose_file.is_file():
        print("cannot find pose file", file=sys.stderr)
        return 1
    with pose_file.open(encoding="utf-8") as stream:
        poses = read_poses(stream, args.count)

    print("converting images to a point cloud ...")
    clouds = []
    for i, pose in enumerate(poses, start=1):
        print(f"converting image: {i}")
        with Image.open(root / "color" / f"{i}.png") as img:
            color = np.asarray(img.convert("RGB"))
        with Image.open(root / "depth" / f"{i}.png") as img:
            depth = np.asarray(img)
        points = depth_to_points(color, depth, pose, DEFAULT_INTRINSICS, args.depth_scale)
        clouds.append(statistical_outlier_removal(points, args.mean_k, args.std_mul))

    cloud = np.vstack(clouds) if clouds else np.zeros((0, 6))
    print(f"the point cloud has {len(cloud)} points.")
    cloud = voxel_filter(cloud, args.resolution)
    print(f"after filtering, the point cloud has {len(cloud)} points.")
    _write_ply(args.output, cloud)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())