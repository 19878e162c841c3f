"""Rigid transforms as homogeneous matrices and Euler angle extraction."""

from __future__ import annotations

import math

import numpy as np

from slamkit.lie import SE3, SO3, hat


def angle_axis_matrix(angle, axis) -> np.ndarray:
    """Rotation matrix for a rotation of ``angle`` about ``axis``."""
    a = np.asarray(axis, dtype=float).reshape(-1)
    if a.size != 3:
        raise ValueError("axis must have 3 elements")
    norm = float(np.linalg.norm(a))
    if norm == 0:
        raise ValueError("axis must not be zero")
    k = hat(a / norm)
    return np.eye(3) + math.sin(angle) * k + (1 - math.cos(angle)) * (k @ k)


def euler_angles_zyx(matrix) -> np.ndarray:
    """Yaw, pitch, roll such that R = Rz(yaw) Ry(pitch) Rx(roll); yaw in [0, pi]."""
    m = np.asarray(matrix, dtype=float)
    if m.shape != (3, 3):
        raise ValueError("matrix must be 3x3")
    yaw = math.atan2(m[1, 0], m[0, 0])
    c2 = math.hypot(m[2, 2], m[2, 1])
    if yaw < 0:
        yaw += math.pi
        pitch = math.atan2(-m[2, 0], -c2)
    else:
        pitch = math.atan2(-m[2, 0], c2)
    s1, c1 = math.sin(yaw), math.cos(yaw)
    roll = math.atan2(s1 * m[0, 2] - c1 * m[1, 2], c1 * m[1, 1] - s1 * m[0, 1])
    return np.array([yaw, pitch, roll])


def isometry(rotation, translation=None) -> np.ndarray:
    """4x4 homogeneous matrix of a rotation and a translation."""
    r = rotation.matrix() if isinstance(rotation, SO3) else np.asarray(rotation, dtype=float)
    if r.shape != (3, 3):
        raise ValueError("rotation must be 3x3")
    out = np.eye(4)
    out[:3, :3] = r
    if translation is not None:
        t = np.asarray(translation, dtype=float).reshape(-1)
        if t.size != 3:
            raise ValueError("translation must have 3 elements")
        out[:3, 3] = t
    return out


def transform_point(transform, point) -> np.ndarray:
    """Apply a 4x4 homogeneous transform to a point or an (N, 3) array."""
    t = np.asarray(transform, dtype=float)
    if t.shape != (4, 4):
        raise ValueError("transform must be 4x4")
    p = np.asarray(point, dtype=float)
    if p.shape[-1:] != (3,) or p.ndim > 2:
        raise ValueError("point must have shape (3,) or (N, 3)")
    if p.ndim == 1:
        return t[:3, :3] @ p + t[:3, 3]
    return p @ t[:3, :3].T + t[:3, 3]


def relative_point(q1, t1, q2, t2, point) -> np.ndarray:
    """Express a point seen by camera 1 in the frame of camera 2.

    Each camera pose is given as a quaternion (w, x, y, z) and a translation,
    mapping world coordinates into camera coordinates.
    """
    q1, q2 = tuple(q1), tuple(q2)
    if len(q1) != 4 or len(q2) != 4:
        raise ValueError("quaternions must have 4 elements")
    t1w = SE3.from_quaternion(*q1, translation=t1)
    t2w = SE3.from_quaternion(*q2, translation=t2)
    return (t2w * t1w.inverse()) * np.asarray(point, dtype=float)