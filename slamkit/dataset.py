"""Reading a KITTI-style stereo sequence: calibration and image pairs."""

from __future__ import annotations

import logging
from pathlib import Path

import numpy as np

from slamkit.camera import Camera
from slamkit.entities import Frame
from slamkit.lie import SE3

logger = logging.getLogger(__name__)

CAMERA_COUNT = 4
_VALUES_PER_CAMERA = 12


def parse_calibration(stream) -> list[Camera]:
    """Cameras from a calib.txt stream of 'Pn: p0 ... p11' projection matrices.

    Intrinsics are halved to match the half-resolution images.
    """
    text = stream.read() if hasattr(stream, "read") else "".join(stream)
    tokens = text.split()
    group = 1 + _VALUES_PER_CAMERA
    if len(tokens) < CAMERA_COUNT * group:
        raise ValueError(f"calibration needs {CAMERA_COUNT} cameras of {_VALUES_PER_CAMERA} values")
    cameras = []
    for i in range(CAMERA_COUNT):
        fields = tokens[i * group + 1:(i + 1) * group]
        try:
            p = np.array([float(f) for f in fields]).reshape(3, 4)
        except ValueError as exc:
            raise ValueError(f"camera {i}: {exc}") from exc
        k = p[:, :3]
        try:
            t = np.linalg.solve(k, p[:, 3])
        except np.linalg.LinAlgError as exc:
            raise ValueError(f"camera {i}: singular intrinsic matrix") from exc
        k = k * 0.5
        cameras.append(Camera(k[0, 0], k[1, 1], k[0, 2], k[1, 2], float(np.linalg.norm(t)), SE3(None, t)))
        logger.info("Camera %d extrinsics: %s", i, t)
    return cameras


def _load_gray(path: Path):
    from PIL import Image

    try:
        with Image.open(path) as img:
            return np.asarray(img.convert("L"))
    except OSError:
        return None


def _half_size(image: np.ndarray) -> np.ndarray:
    """Nearest-neighbour resize by one half."""
    rows = int(np.rint(image.shape[0] * 0.5))
    cols = int(np.rint(image.shape[1] * 0.5))
    return image[:2 * rows:2, :2 * cols:2].copy()


class Dataset:
    """A stereo sequence on disk; ``init`` reads the cameras, ``next_frame`` the images."""

    def __init__(self, dataset_path):
        self.dataset_path = Path(dataset_path)
        self.current_image_index = 0
        self.cameras: list[Camera] = []

    def init(self) -> bool:
        """Read calib.txt; raises FileNotFoundError if it is missing."""
        calib = self.dataset_path / "calib.txt"
        if not calib.is_file():
            logger.error("cannot find %s!", calib)
            raise FileNotFoundError(f"cannot find {calib}!")
        with calib.open(encoding="utf-8") as stream:
            self.cameras = parse_calibration(stream)
        self.current_image_index = 0
        return True

    def next_frame(self) -> Frame | None:
        """The next stereo pair at half resolution, or None when images run out."""
        name = f"{self.current_image_index:06d}.png"
        left = _load_gray(self.dataset_path / "image_0" / name)
        right = _load_gray(self.dataset_path / "image_1" / name)
        if left is None or right is None:
            logger.warning("cannot find images at index %d", self.current_image_index)
            return None
        frame = Frame.create()
        frame.left_img = _half_size(left)
        frame.right_img = _half_size(right)
        self.current_image_index += 1
        return frame

    def camera(self, camera_id: int) -> Camera:
        if not 0 <= camera_id < len(self.cameras):
            raise IndexError(f"no camera {camera_id}")
        return self.cameras[camera_id]