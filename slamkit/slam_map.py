"""The map of keyframes and landmarks, with a sliding window of active ones."""

from __future__ import annotations

import logging
import threading

import numpy as np

from slamkit.entities import Frame, MapPoint

logger = logging.getLogger(__name__)

DEFAULT_ACTIVE_KEYFRAMES = 7
MIN_DISTANCE_THRESHOLD = 0.2


class Map:
    """All keyframes and landmarks, and the active subset used for optimisation."""

    def __init__(self, num_active_keyframes: int = DEFAULT_ACTIVE_KEYFRAMES):
        self.num_active_keyframes = num_active_keyframes
        self._lock = threading.RLock()
        self._landmarks: dict[int, MapPoint] = {}
        self._active_landmarks: dict[int, MapPoint] = {}
        self._keyframes: dict[int, Frame] = {}
        self._active_keyframes: dict[int, Frame] = {}
        self._current_frame: Frame | None = None

    def insert_keyframe(self, frame: Frame) -> None:
        """Add or replace a keyframe; retires one if the active window is full."""
        with self._lock:
            self._current_frame = frame
            self._keyframes[frame.keyframe_id] = frame
            self._active_keyframes[frame.keyframe_id] = frame
            if len(self._active_keyframes) > self.num_active_keyframes:
                self._remove_old_keyframe()

    def insert_map_point(self, map_point: MapPoint) -> None:
        with self._lock:
            self._landmarks[map_point.id] = map_point
            self._active_landmarks[map_point.id] = map_point

    def all_map_points(self) -> dict[int, MapPoint]:
        with self._lock:
            return dict(self._landmarks)

    def all_keyframes(self) -> dict[int, Frame]:
        with self._lock:
            return dict(self._keyframes)

    def active_map_points(self) -> dict[int, MapPoint]:
        with self._lock:
            return dict(self._active_landmarks)

    def active_keyframes(self) -> dict[int, Frame]:
        with self._lock:
            return dict(self._active_keyframes)

    def _remove_old_keyframe(self) -> None:
        """Retire the keyframe closest to the current one if it is very close,
        otherwise the farthest one."""
        current = self._current_frame
        if current is None:
            return
        max_dis, min_dis = 0.0, 9999.0
        max_kf_id = min_kf_id = 0
        twc = current.pose().inverse()
        for kf_id, kf in self._active_keyframes.items():
            if kf is current:
                continue
            dis = float(np.linalg.norm((kf.pose() * twc).log()))
            if dis > max_dis:
                max_dis, max_kf_id = dis, kf_id
            if dis < min_dis:
                min_dis, min_kf_id = dis, kf_id

        target = min_kf_id if min_dis < MIN_DISTANCE_THRESHOLD else max_kf_id
        frame_to_remove = self._keyframes[target]

        logger.info("remove keyframe %d", frame_to_remove.keyframe_id)
        self._active_keyframes.pop(frame_to_remove.keyframe_id, None)
        for feat in (*frame_to_remove.features_left, *frame_to_remove.features_right):
            if feat is None:
                continue
            mp = feat.map_point
            if mp is not None:
                mp.remove_observation(feat)

        self.clean_map()

    def clean_map(self) -> int:
        """Deactivate landmarks no longer observed; returns how many were removed."""
        with self._lock:
            unobserved = [pid for pid, mp in self._active_landmarks.items() if mp.observed_times == 0]
            for pid in unobserved:
                del self._active_landmarks[pid]
        logger.info("Removed %d active landmarks", len(unobserved))
        return len(unobserved)