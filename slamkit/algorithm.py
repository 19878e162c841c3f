"""Geometric algorithms: linear triangulation and point conversion."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from slamkit.lie import SE3


def triangulate(poses: Sequence[SE3], points) -> np.ndarray | None:
    """Triangulate a world point by SVD from its normalised-plane observations.

    Returns the point, or None when the solution is of poor quality.
    """
    poses = list(poses)
    obs = [np.asarray(p, dtype=float).reshape(-1) for p in points]
    if len(poses) != len(obs):
        raise ValueError("poses and points must have the same length")
    if len(poses) < 2:
        raise ValueError("at least two observations are needed")
    rows = []
    for pose, pt in zip(poses, obs):
        m = pose.matrix3x4()
        rows.append(pt[0] * m[2] - m[0])
        rows.append(pt[1] * m[2] - m[1])
    a = np.array(rows)
    _, singular, vt = np.linalg.svd(a, full_matrices=False)
    solution = vt[3]
    if solution[3] == 0 or singular[2] <= 0:
        return None
    if singular[3] / singular[2] >= 1e-2:
        return None
    return solution[:3] / solution[3]


def to_vec2(point) -> np.ndarray:
    """Convert an object with x and y, or a pair, to a 2-vector."""
    if hasattr(point, "x") and hasattr(point, "y"):
        return np.array([float(point.x), float(point.y)])
    arr = np.asarray(point, dtype=float).reshape(-1)
    if arr.size != 2:
        raise ValueError("point must have 2 coordinates")
    return arr