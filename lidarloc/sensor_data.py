"""Sensor measurement records and time synchronisation of measurement queues."""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from typing import ClassVar, Optional, Sequence, TypeVar

import numpy as np

from lidarloc.geometry import quaternion_to_matrix
from lidarloc.local_cartesian import LocalCartesian

logger = logging.getLogger(__name__)

MAX_SYNC_GAP = 0.2


@dataclass
class Vector3:
    """A 3-vector of measurements."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def _blend(self, other: "Vector3", front_scale: float, back_scale: float) -> "Vector3":
        return Vector3(
            self.x * front_scale + other.x * back_scale,
            self.y * front_scale + other.y * back_scale,
            self.z * front_scale + other.z * back_scale,
        )


@dataclass
class Orientation:
    """An orientation quaternion."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0
    w: float = 0.0

    def normalized(self) -> "Orientation":
        """Return this quaternion scaled to unit length."""
        norm = math.sqrt(self.x**2 + self.y**2 + self.z**2 + self.w**2)
        if norm == 0.0:
            raise ValueError("cannot normalise a zero quaternion")
        return Orientation(self.x / norm, self.y / norm, self.z / norm, self.w / norm)


@dataclass
class IMUData:
    """One inertial measurement."""

    time: float = 0.0
    linear_acceleration: Vector3 = field(default_factory=Vector3)
    angular_velocity: Vector3 = field(default_factory=Vector3)
    orientation: Orientation = field(default_factory=Orientation)

    def orientation_matrix(self) -> np.ndarray:
        """Return the orientation as a 3x3 rotation matrix."""
        o = self.orientation
        return quaternion_to_matrix(o.x, o.y, o.z, o.w)


@dataclass
class GNSSData:
    """One satellite fix, with its position in the shared local frame."""

    time: float = 0.0
    longitude: float = 0.0
    latitude: float = 0.0
    altitude: float = 0.0
    local_e: float = 0.0
    local_n: float = 0.0
    local_u: float = 0.0
    status: int = 0
    service: int = 0

    _geo_converter: ClassVar[LocalCartesian] = LocalCartesian()
    _origin_position_inited: ClassVar[bool] = False

    def init_origin_position(self) -> None:
        """Make this fix the origin of the local frame shared by all fixes."""
        GNSSData._geo_converter.reset(self.latitude, self.longitude, self.altitude)
        GNSSData._origin_position_inited = True

    def update_xyz(self) -> None:
        """Compute the local east, north and up coordinates of this fix."""
        if not GNSSData._origin_position_inited:
            logger.warning("GeoConverter has not set origin position")
        self.local_e, self.local_n, self.local_u = GNSSData._geo_converter.forward(
            self.latitude, self.longitude, self.altitude
        )


@dataclass
class CloudData:
    """A timestamped point cloud of ``(N, 3)`` coordinates."""

    time: float = 0.0
    points: np.ndarray = field(default_factory=lambda: np.empty((0, 3)))

    def __post_init__(self) -> None:
        self.points = np.asarray(self.points, dtype=float).reshape(-1, 3)


_T = TypeVar("_T", IMUData, GNSSData)


def _bracket(unsynced: deque, sync_time: float) -> Optional[tuple[_T, _T, float, float]]:
    """Drop stale items and return the pair around ``sync_time`` with interpolation weights."""
    while len(unsynced) >= 2:
        if unsynced[0].time > sync_time:
            return None
        if unsynced[1].time < sync_time:
            unsynced.popleft()
            continue
        if sync_time - unsynced[0].time > MAX_SYNC_GAP:
            unsynced.popleft()
            return None
        if unsynced[1].time - sync_time > MAX_SYNC_GAP:
            return None
        break
    if len(unsynced) < 2:
        return None

    front, back = unsynced[0], unsynced[1]
    span = back.time - front.time
    front_scale = (back.time - sync_time) / span
    back_scale = (sync_time - front.time) / span
    return front, back, front_scale, back_scale


def sync_imu_data(unsynced: deque, sync_time: float) -> Optional[IMUData]:
    """Interpolate an IMU measurement at ``sync_time``, or return None if it cannot be done.

    Measurements that are too old are removed from ``unsynced``.
    """
    bracket = _bracket(unsynced, sync_time)
    if bracket is None:
        return None
    front, back, fs, bs = bracket
    fo, bo = front.orientation, back.orientation
    orientation = Orientation(
        fo.x * fs + bo.x * bs,
        fo.y * fs + bo.y * bs,
        fo.z * fs + bo.z * bs,
        fo.w * fs + bo.w * bs,
    ).normalized()
    return IMUData(
        time=sync_time,
        linear_acceleration=front.linear_acceleration._blend(back.linear_acceleration, fs, bs),
        angular_velocity=front.angular_velocity._blend(back.angular_velocity, fs, bs),
        orientation=orientation,
    )


def sync_gnss_data(unsynced: deque, sync_time: float) -> Optional[GNSSData]:
    """Interpolate a satellite fix at ``sync_time``, or return None if it cannot be done.

    Fixes that are too old are removed from ``unsynced``.
    """
    bracket = _bracket(unsynced, sync_time)
    if bracket is None:
        return None
    front, back, fs, bs = bracket

    def mix(name: str) -> float:
        return getattr(front, name) * fs + getattr(back, name) * bs

    return GNSSData(
        time=sync_time,
        status=back.status,
        longitude=mix("longitude"),
        latitude=mix("latitude"),
        altitude=mix("altitude"),
        local_e=mix("local_e"),
        local_n=mix("local_n"),
        local_u=mix("local_u"),
    )


def _as_deque(items: Sequence) -> deque:
    return items if isinstance(items, deque) else deque(items)