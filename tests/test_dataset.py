import io

import numpy as np
import pytest
from PIL import Image

from slamkit.dataset import Dataset, parse_calibration

CALIB = """P0: 718.856 0 607.1928 0 0 718.856 185.2157 0 0 0 1 0
P1: 718.856 0 607.1928 -386.1448 0 718.856 185.2157 0 0 0 1 0
P2: 718.856 0 607.1928 45.38225 0 718.856 185.2157 -0.1130887 0 0 1 0.003779761
P3: 718.856 0 607.1928 -337.2877 0 718.856 185.2157 2.369057 0 0 1 0.004915215
"""


def _write_dataset(root, frames=1):
    (root / "calib.txt").write_text(CALIB, encoding="utf-8")
    images = []
    for side in ("image_0", "image_1"):
        (root / side).mkdir()
    for index in range(frames):
        left = np.arange(24, dtype=np.uint8).reshape(4, 6)
        right = (left + 100).astype(np.uint8)
        Image.fromarray(left).save(root / "image_0" / f"{index:06d}.png")
        Image.fromarray(right).save(root / "image_1" / f"{index:06d}.png")
        images.append((left, right))
    return images


def test_parse_calibration_halves_intrinsics():
    cameras = parse_calibration(io.StringIO(CALIB))
    assert len(cameras) == 4
    cam = cameras[0]
    assert cam.fx == pytest.approx(718.856 * 0.5)
    assert cam.cx == pytest.approx(607.1928 * 0.5)
    assert cam.baseline == pytest.approx(0.0)


def test_baseline_equals_extrinsic_translation_norm():
    for cam in parse_calibration(io.StringIO(CALIB)):
        assert cam.baseline == pytest.approx(float(np.linalg.norm(cam.pose.translation)))


def test_right_camera_is_offset_along_x():
    right = parse_calibration(io.StringIO(CALIB))[1]
    t = right.pose.translation
    assert t[0] < 0
    assert t[1] == pytest.approx(0.0)
    assert t[2] == pytest.approx(0.0)


def test_parse_calibration_too_short():
    with pytest.raises(ValueError):
        parse_calibration(io.StringIO("P0: 1 2 3\n"))


def test_parse_calibration_bad_number():
    bad = CALIB.replace("718.856", "abc", 1)
    with pytest.raises(ValueError):
        parse_calibration(io.StringIO(bad))


def test_init_reads_cameras(tmp_path):
    _write_dataset(tmp_path)
    dataset = Dataset(tmp_path)
    assert dataset.init() is True
    assert dataset.camera(1).baseline > 0
    with pytest.raises(IndexError):
        dataset.camera(4)


def test_init_missing_calibration(tmp_path):
    with pytest.raises(FileNotFoundError):
        Dataset(tmp_path).init()


def test_next_frame_reads_half_resolution_pair(tmp_path):
    (left, right), = _write_dataset(tmp_path)
    dataset = Dataset(tmp_path)
    dataset.init()
    frame = dataset.next_frame()
    assert np.array_equal(frame.left_img, left[::2, ::2])
    assert np.array_equal(frame.right_img, right[::2, ::2])
    assert dataset.current_image_index == 1
    assert dataset.next_frame() is None


def test_next_frame_ids_increase(tmp_path):
    _write_dataset(tmp_path, frames=2)
    dataset = Dataset(tmp_path)
    dataset.init()
    first = dataset.next_frame()
    second = dataset.next_frame()
    assert second.id == first.id + 1