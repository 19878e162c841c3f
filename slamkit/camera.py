"""Pinhole stereo camera model."""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from slamkit.lie import SE3


@dataclass
class Camera:
    """Pinhole camera with intrinsics and an extrinsic pose from the rig."""

    fx: float = 0.0
    fy: float = 0.0
    cx: float = 0.0
    cy: float = 0.0
    baseline: float = 0.0
    pose: SE3 = field(default_factory=SE3)
    pose_inv: SE3 = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.pose_inv = self.pose.inverse()

    def intrinsics(self) -> np.ndarray:
        """The 3x3 intrinsic matrix K."""
        return np.array([[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]])

    def world2camera(self, p_w, t_c_w: SE3) -> np.ndarray:
        return (self.pose * t_c_w) * np.asarray(p_w, dtype=float)

    def camera2world(self, p_c, t_c_w: SE3) -> np.ndarray:
        return (t_c_w.inverse() * self.pose_inv) * np.asarray(p_c, dtype=float)

    def camera2pixel(self, p_c) -> np.ndarray:
        x, y, z = np.asarray(p_c, dtype=float).reshape(3)
        if z == 0:
            raise ValueError("point lies on the camera plane")
        return np.array([self.fx * x / z + self.cx, self.fy * y / z + self.cy])

    def pixel2camera(self, p_p, depth: float = 1.0) -> np.ndarray:
        u, v = np.asarray(p_p, dtype=float).reshape(2)
        return np.array([(u - self.cx) * depth / self.fx, (v - self.cy) * depth / self.fy, depth])

    def world2pixel(self, p_w, t_c_w: SE3) -> np.ndarray:
        return self.camera2pixel(self.world2camera(p_w, t_c_w))

    def pixel2world(self, p_p, t_c_w: SE3, depth: float = 1.0) -> np.ndarray:
        return self.camera2world(self.pixel2camera(p_p, depth), t_c_w)