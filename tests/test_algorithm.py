from types import SimpleNamespace

import numpy as np
import pytest

from slamkit.algorithm import to_vec2, triangulate
from slamkit.lie import SE3


def test_triangulation():
    pt_world = np.array([30.0, 20.0, 10.0])
    poses = [
        SE3.from_quaternion(0, 0, 0, 1, translation=[0, 0, 0]),
        SE3.from_quaternion(0, 0, 0, 1, translation=[0, -10, 0]),
        SE3.from_quaternion(0, 0, 0, 1, translation=[0, 10, 0]),
    ]
    points = []
    for pose in poses:
        pc = pose * pt_world
        points.append(pc / pc[2])
    estimated = triangulate(poses, points)
    assert estimated is not None
    assert np.allclose(estimated, pt_world, atol=0.01)


def test_triangulation_stereo_pair():
    pt_world = np.array([0.5, -0.3, 4.0])
    poses = [SE3(), SE3(None, [-0.5, 0.0, 0.0])]
    points = [(p * pt_world) / (p * pt_world)[2] for p in poses]
    estimated = triangulate(poses, points)
    assert estimated is not None
    assert np.allclose(estimated, pt_world, atol=1e-6)


def test_triangulation_length_mismatch():
    with pytest.raises(ValueError):
        triangulate([SE3(), SE3()], [[0, 0, 1]])


def test_triangulation_needs_two_views():
    with pytest.raises(ValueError):
        triangulate([SE3()], [[0, 0, 1]])


def test_to_vec2_from_object_and_pair():
    assert np.allclose(to_vec2(SimpleNamespace(x=1.5, y=-2.0)), [1.5, -2.0])
    assert np.allclose(to_vec2((3, 4)), [3.0, 4.0])
    with pytest.raises(ValueError):
        to_vec2((1, 2, 3))