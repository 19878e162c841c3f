"""Removing radial-tangential lens distortion from a grayscale image."""

from __future__ import annotations

import argparse
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

IMAGE_FILE = "./distorted.png"
OUTPUT_FILE = "undistorted.png"


@dataclass(frozen=True)
class Distortion:
    """Radial (k1, k2) and tangential (p1, p2) distortion coefficients."""

    k1: float = 0.0
    k2: float = 0.0
    p1: float = 0.0
    p2: float = 0.0


DEFAULT_DISTORTION = Distortion(-0.28340811, 0.07395907, 0.00019359, 1.76187114e-05)
DEFAULT_INTRINSICS = (458.654, 457.296, 367.215, 248.375)


def distort_normalized(distortion: Distortion, x, y):
    """Map undistorted normalised coordinates to distorted ones."""
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    r2 = x * x + y * y
    radial = 1 + distortion.k1 * r2 + distortion.k2 * r2 * r2
    x_d = x * radial + 2 * distortion.p1 * x * y + distortion.p2 * (r2 + 2 * x * x)
    y_d = y * radial + distortion.p1 * (r2 + 2 * y * y) + 2 * distortion.p2 * x * y
    return x_d, y_d


def undistort_image(image, distortion: Distortion, fx: float, fy: float, cx: float, cy: float) -> np.ndarray:
    """Undistort a grayscale image by nearest-neighbour lookup; pixels mapping outside become 0."""
    img = np.asarray(image)
    if img.ndim != 2:
        raise ValueError("image must be a 2D grayscale array")
    rows, cols = img.shape
    v, u = np.mgrid[0:rows, 0:cols].astype(float)
    x_d, y_d = distort_normalized(distortion, (u - cx) / fx, (v - cy) / fy)
    u_d = fx * x_d + cx
    v_d = fy * y_d + cy
    valid = (u_d >= 0) & (v_d >= 0) & (u_d < cols) & (v_d < rows)
    out = np.zeros_like(img)
    out[valid] = img[v_d[valid].astype(int), u_d[valid].astype(int)]
    return out


def main(argv: Sequence[str] | None = None) -> int:
    """Undistort an image file with the built-in calibration and save the result."""
    from PIL import Image

    parser = argparse.ArgumentParser(description="Undistort a grayscale image.")
    parser.add_argument("image", nargs="?", default=IMAGE_FILE)
    parser.add_argument("--output", default=OUTPUT_FILE)
    args = parser.parse_args(argv)

    with Image.open(args.image) as source:
        image = np.asarray(source.convert("L"))
    result = undistort_image(image, DEFAULT_DISTORTION, *DEFAULT_INTRINSICS)
    Image.fromarray(result).save(args.output)
    print(f"undistorted image saved to {args.output}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())