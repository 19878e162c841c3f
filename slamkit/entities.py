"""Frames, 2D features and 3D map points of the visual odometry map.

A feature refers to its frame and its map point weakly, and a map point
refers to the features that observe it weakly, so no ownership cycles form.
"""

from __future__ import annotations

import itertools
import threading
import weakref

import numpy as np

from slamkit.lie import SE3


def _ref(obj):
    return None if obj is None else weakref.ref(obj)


def _deref(ref):
    return None if ref is None else ref()


class Feature:
    """A 2D keypoint in one image; linked to a map point after triangulation."""

    def __init__(self, frame: Frame | None = None, position=(0.0, 0.0), *, is_on_left_image: bool = True):
        self._frame = _ref(frame)
        self._map_point = None
        self.position = np.asarray(position, dtype=float).reshape(2)
        self.is_outlier = False
        self.is_on_left_image = is_on_left_image

    @property
    def frame(self) -> Frame | None:
        """The frame holding this feature, or None once it is gone."""
        return _deref(self._frame)

    @frame.setter
    def frame(self, value: Frame | None) -> None:
        self._frame = _ref(value)

    @property
    def map_point(self) -> MapPoint | None:
        """The associated map point, or None if there is none or it is gone."""
        return _deref(self._map_point)

    @map_point.setter
    def map_point(self, value: MapPoint | None) -> None:
        self._map_point = _ref(value)

    def __repr__(self) -> str:
        x, y = self.position
        side = "left" if self.is_on_left_image else "right"
        return f"Feature(position=({x:g}, {y:g}), {side}, outlier={self.is_outlier})"


class Frame:
    """A stereo frame with its own id; keyframes also carry a keyframe id."""

    _ids = itertools.count()
    _keyframe_ids = itertools.count()
    _counter_lock = threading.Lock()

    def __init__(self, frame_id: int = 0, time_stamp: float = 0.0, pose: SE3 | None = None,
                 left_img=None, right_img=None):
        self.id = frame_id
        self.keyframe_id = 0
        self.is_keyframe = False
        self.time_stamp = time_stamp
        self._pose = SE3() if pose is None else pose
        self._pose_lock = threading.Lock()
        self.left_img = left_img
        self.right_img = right_img
        self.features_left: list[Feature] = []
        # Matches of features_left in the right image; None where none was found.
        self.features_right: list[Feature | None] = []

    @classmethod
    def create(cls) -> Frame:
        """A new frame with the next frame id."""
        with cls._counter_lock:
            frame_id = next(Frame._ids)
        return cls(frame_id)

    def pose(self) -> SE3:
        """The camera-from-world pose T_cw."""
        with self._pose_lock:
            return self._pose

    def set_pose(self, pose: SE3) -> None:
        if not isinstance(pose, SE3):
            raise TypeError("pose must be an SE3")
        with self._pose_lock:
            self._pose = pose

    def set_keyframe(self) -> None:
        """Mark this frame as a keyframe and give it the next keyframe id."""
        with Frame._counter_lock:
            self.keyframe_id = next(Frame._keyframe_ids)
        self.is_keyframe = True

    def __repr__(self) -> str:
        kind = f", keyframe {self.keyframe_id}" if self.is_keyframe else ""
        return f"Frame(id={self.id}{kind})"


class MapPoint:
    """A landmark in the world, formed by triangulating features."""

    _ids = itertools.count()
    _counter_lock = threading.Lock()

    def __init__(self, point_id: int = 0, position=None):
        self.id = point_id
        self.is_outlier = False
        self._pos = np.zeros(3) if position is None else np.asarray(position, dtype=float).reshape(3).copy()
        self._lock = threading.Lock()
        self.observed_times = 0
        self._observations: list[weakref.ref] = []

    @classmethod
    def create(cls) -> MapPoint:
        """A new map point with the next map point id."""
        with cls._counter_lock:
            point_id = next(MapPoint._ids)
        return cls(point_id)

    def pos(self) -> np.ndarray:
        """Position in the world frame."""
        with self._lock:
            return self._pos.copy()

    def set_pos(self, pos) -> None:
        value = np.asarray(pos, dtype=float).reshape(3).copy()
        with self._lock:
            self._pos = value

    def add_observation(self, feature: Feature) -> None:
        with self._lock:
            self._observations.append(weakref.ref(feature))
            self.observed_times += 1

    def remove_observation(self, feature: Feature) -> bool:
        """Drop the observation by ``feature`` and unlink it; returns whether it was found."""
        with self._lock:
            for index, ref in enumerate(self._observations):
                if ref() is feature:
                    del self._observations[index]
                    feature.map_point = None
                    self.observed_times -= 1
                    return True
        return False

    def observations(self) -> list[Feature]:
        """Features observing this point that still exist."""
        with self._lock:
            refs = list(self._observations)
        return [feat for feat in (ref() for ref in refs) if feat is not None]

    def __repr__(self) -> str:
        return f"MapPoint(id={self.id}, pos={self.pos().tolist()!r}, observed={self.observed_times})"