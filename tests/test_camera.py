import numpy as np
import pytest

from slamkit.camera import Camera
from slamkit.lie import SE3, SO3


@pytest.fixture
def camera():
    return Camera(fx=500.0, fy=480.0, cx=320.0, cy=240.0, baseline=0.5, pose=SE3(SO3(), [-0.5, 0.0, 0.0]))


@pytest.fixture
def t_c_w():
    return SE3.exp([0.1, -0.2, 0.3, 0.05, -0.02, 0.1])


def test_intrinsics_layout(camera):
    k = camera.intrinsics()
    assert np.allclose(k, [[500.0, 0.0, 320.0], [0.0, 480.0, 240.0], [0.0, 0.0, 1.0]])


def test_pose_inverse_is_kept(camera):
    assert np.allclose((camera.pose * camera.pose_inv).matrix(), np.eye(4))


def test_pixel_camera_round_trip(camera):
    px = np.array([100.0, 50.0])
    p_c = camera.pixel2camera(px, 3.0)
    assert p_c[2] == 3.0
    assert np.allclose(camera.camera2pixel(p_c), px)


def test_world_camera_round_trip(camera, t_c_w):
    p_w = np.array([1.0, 2.0, 5.0])
    p_c = camera.world2camera(p_w, t_c_w)
    assert np.allclose(p_c, (camera.pose * t_c_w) * p_w)
    assert np.allclose(camera.camera2world(p_c, t_c_w), p_w)


def test_pixel_world_round_trip(camera, t_c_w):
    px = np.array([400.0, 300.0])
    p_w = camera.pixel2world(px, t_c_w, 4.0)
    assert np.allclose(camera.world2pixel(p_w, t_c_w), px)


def test_zero_depth_raises(camera):
    with pytest.raises(ValueError):
        camera.camera2pixel([1.0, 1.0, 0.0])