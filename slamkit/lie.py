"""Rotation group SO(3), rigid-motion group SE(3) and their Lie algebras.

Tangent vectors of SE(3) are ordered translation first, rotation last.
Quaternions are given as (w, x, y, z).
"""

from __future__ import annotations

import math

import numpy as np

_SMALL_ANGLE = 1e-8
_ORTHO_TOL = 1e-6


def _vector(value, size: int, name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=float)
    if arr.size != size:
        raise ValueError(f"{name} must have {size} elements, got shape {arr.shape}")
    return arr.reshape(size)


def _matrix(value, shape: tuple[int, int], name: str) -> np.ndarray:
    arr = np.asarray(value, dtype=float)
    if arr.shape != shape:
        raise ValueError(f"{name} must have shape {shape}, got {arr.shape}")
    return arr


def hat(omega) -> np.ndarray:
    """Skew-symmetric matrix of a 3-vector."""
    x, y, z = _vector(omega, 3, "omega")
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def vee(matrix) -> np.ndarray:
    """3-vector of a skew-symmetric matrix."""
    m = _matrix(matrix, (3, 3), "matrix")
    return np.array([m[2, 1], m[0, 2], m[1, 0]])


def hat_se3(xi) -> np.ndarray:
    """4x4 twist matrix of a 6-vector (translation, rotation)."""
    v = _vector(xi, 6, "xi")
    out = np.zeros((4, 4))
    out[:3, :3] = hat(v[3:])
    out[:3, 3] = v[:3]
    return out


def vee_se3(matrix) -> np.ndarray:
    """6-vector (translation, rotation) of a 4x4 twist matrix."""
    m = _matrix(matrix, (4, 4), "matrix")
    return np.concatenate([m[:3, 3], vee(m[:3, :3])])


def quaternion_to_matrix(w, x, y, z) -> np.ndarray:
    """Rotation matrix of a quaternion; the quaternion is normalised first."""
    norm = math.sqrt(w * w + x * x + y * y + z * z)
    if norm < 1e-12:
        raise ValueError("quaternion has zero norm")
    w, x, y, z = w / norm, x / norm, y / norm, z / norm
    return np.array(
        [
            [1 - 2 * (y * y + z * z), 2 * (x * y - w * z), 2 * (x * z + w * y)],
            [2 * (x * y + w * z), 1 - 2 * (x * x + z * z), 2 * (y * z - w * x)],
            [2 * (x * z - w * y), 2 * (y * z + w * x), 1 - 2 * (x * x + y * y)],
        ]
    )


def matrix_to_quaternion(matrix) -> tuple[float, float, float, float]:
    """Unit quaternion (w, x, y, z) with w >= 0 of a rotation matrix."""
    m = _matrix(matrix, (3, 3), "matrix")
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    if trace > 0:
        s = math.sqrt(trace + 1.0) * 2
        w, x, y, z = 0.25 * s, (m[2, 1] - m[1, 2]) / s, (m[0, 2] - m[2, 0]) / s, (m[1, 0] - m[0, 1]) / s
    elif m[0, 0] > m[1, 1] and m[0, 0] > m[2, 2]:
        s = math.sqrt(1.0 + m[0, 0] - m[1, 1] - m[2, 2]) * 2
        w, x, y, z = (m[2, 1] - m[1, 2]) / s, 0.25 * s, (m[0, 1] + m[1, 0]) / s, (m[0, 2] + m[2, 0]) / s
    elif m[1, 1] > m[2, 2]:
        s = math.sqrt(1.0 + m[1, 1] - m[0, 0] - m[2, 2]) * 2
        w, x, y, z = (m[0, 2] - m[2, 0]) / s, (m[0, 1] + m[1, 0]) / s, 0.25 * s, (m[1, 2] + m[2, 1]) / s
    else:
        s = math.sqrt(1.0 + m[2, 2] - m[0, 0] - m[1, 1]) * 2
        w, x, y, z = (m[1, 0] - m[0, 1]) / s, (m[0, 2] + m[2, 0]) / s, (m[1, 2] + m[2, 1]) / s, 0.25 * s
    norm = math.sqrt(w * w + x * x + y * y + z * z)
    q = (w / norm, x / norm, y / norm, z / norm)
    if q[0] < 0:
        q = tuple(-c for c in q)
    return tuple(float(c) for c in q)


def _apply(rotation: np.ndarray, points, offset=None) -> np.ndarray:
    p = np.asarray(points, dtype=float)
    if p.shape[-1:] != (3,) or p.ndim > 2:
        raise ValueError(f"points must have shape (3,) or (N, 3), got {p.shape}")
    out = rotation @ p if p.ndim == 1 else p @ rotation.T
    if offset is not None:
        out = out + offset
    return out


class SO3:
    """A 3D rotation."""

    __slots__ = ("_matrix",)

    def __init__(self, matrix=None):
        if matrix is None:
            m = np.eye(3)
        else:
            m = _matrix(matrix, (3, 3), "matrix").copy()
            if not np.allclose(m.T @ m, np.eye(3), atol=_ORTHO_TOL) or np.linalg.det(m) < 0:
                raise ValueError("matrix is not a rotation matrix")
        self._matrix = m

    @classmethod
    def _trusted(cls, matrix: np.ndarray) -> SO3:
        obj = cls.__new__(cls)
        obj._matrix = matrix
        return obj

    @classmethod
    def from_quaternion(cls, w, x, y, z) -> SO3:
        """Rotation of a quaternion (w, x, y, z), normalised first."""
        return cls._trusted(quaternion_to_matrix(w, x, y, z))

    @classmethod
    def exp(cls, omega) -> SO3:
        """Exponential map from a rotation vector."""
        w = _vector(omega, 3, "omega")
        theta = float(np.linalg.norm(w))
        k = hat(w)
        if theta < _SMALL_ANGLE:
            r = np.eye(3) + k + 0.5 * (k @ k)
        else:
            r = np.eye(3) + math.sin(theta) / theta * k + (1 - math.cos(theta)) / theta**2 * (k @ k)
        return cls._trusted(r)

    def log(self) -> np.ndarray:
        """Logarithmic map to a rotation vector."""
        w, x, y, z = matrix_to_quaternion(self._matrix)
        vec = np.array([x, y, z])
        n = float(np.linalg.norm(vec))
        if n < _SMALL_ANGLE:
            return 2.0 / w * (1.0 - n * n / (3.0 * w * w)) * vec
        if abs(w) < _SMALL_ANGLE:
            two_atan = math.pi if w >= 0 else -math.pi
        else:
            two_atan = 2.0 * math.atan(n / w)
        return two_atan / n * vec

    def inverse(self) -> SO3:
        return SO3._trusted(self._matrix.T.copy())

    def quaternion(self) -> tuple[float, float, float, float]:
        """Unit quaternion (w, x, y, z)."""
        return matrix_to_quaternion(self._matrix)

    def matrix(self) -> np.ndarray:
        return self._matrix.copy()

    def __mul__(self, other):
        if isinstance(other, SO3):
            return SO3._trusted(self._matrix @ other._matrix)
        return _apply(self._matrix, other)

    def __repr__(self) -> str:
        return f"SO3({self._matrix.tolist()!r})"


class SE3:
    """A rigid motion: rotation followed by translation."""

    __slots__ = ("_rotation", "_translation")

    def __init__(self, rotation=None, translation=None):
        if rotation is None:
            rot = SO3()
        elif isinstance(rotation, SO3):
            rot = rotation
        else:
            rot = SO3(rotation)
        self._rotation = rot
        self._translation = np.zeros(3) if translation is None else _vector(translation, 3, "translation").copy()

    @classmethod
    def _trusted(cls, rotation: SO3, translation: np.ndarray) -> SE3:
        obj = cls.__new__(cls)
        obj._rotation = rotation
        obj._translation = translation
        return obj

    @classmethod
    def from_quaternion(cls, w, x, y, z, translation=None) -> SE3:
        """Motion of a quaternion (w, x, y, z) and a translation."""
        return cls(SO3.from_quaternion(w, x, y, z), translation)

    @property
    def rotation(self) -> SO3:
        return self._rotation

    @property
    def translation(self) -> np.ndarray:
        return self._translation.copy()

    def rotation_matrix(self) -> np.ndarray:
        return self._rotation.matrix()

    @classmethod
    def exp(cls, xi) -> SE3:
        """Exponential map from a twist (translation, rotation)."""
        v = _vector(xi, 6, "xi")
        rho, omega = v[:3], v[3:]
        theta = float(np.linalg.norm(omega))
        k = hat(omega)
        if theta < _SMALL_ANGLE:
            jac = np.eye(3) + 0.5 * k + (k @ k) / 6.0
        else:
            jac = (
                np.eye(3)
                + (1 - math.cos(theta)) / theta**2 * k
                + (theta - math.sin(theta)) / theta**3 * (k @ k)
            )
        return cls._trusted(SO3.exp(omega), jac @ rho)

    def log(self) -> np.ndarray:
        """Logarithmic map to a twist (translation, rotation)."""
        omega = self._rotation.log()
        theta = float(np.linalg.norm(omega))
        k = hat(omega)
        if theta < _SMALL_ANGLE:
            jac_inv = np.eye(3) - 0.5 * k + (k @ k) / 12.0
        else:
            coeff = (1 - theta * math.sin(theta) / (2 * (1 - math.cos(theta)))) / theta**2
            jac_inv = np.eye(3) - 0.5 * k + coeff * (k @ k)
        return np.concatenate([jac_inv @ self._translation, omega])

    def inverse(self) -> SE3:
        rot_inv = self._rotation.inverse()
        return SE3._trusted(rot_inv, -(rot_inv * self._translation))

    def matrix(self) -> np.ndarray:
        out = np.eye(4)
        out[:3, :3] = self._rotation.matrix()
        out[:3, 3] = self._translation
        return out

    def matrix3x4(self) -> np.ndarray:
        return self.matrix()[:3, :]

    def adjoint(self) -> np.ndarray:
        """6x6 adjoint matrix acting on (translation, rotation) twists."""
        r = self._rotation.matrix()
        out = np.zeros((6, 6))
        out[:3, :3] = r
        out[:3, 3:] = hat(self._translation) @ r
        out[3:, 3:] = r
        return out

    def __mul__(self, other):
        if isinstance(other, SE3):
            return SE3._trusted(
                self._rotation * other._rotation,
                self._rotation * other._translation + self._translation,
            )
        return _apply(self._rotation.matrix(), other, self._translation)

    def __repr__(self) -> str:
        return f"SE3(rotation={self._rotation.matrix().tolist()!r}, translation={self._translation.tolist()!r})"