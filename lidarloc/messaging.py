"""In-process topic bus, transform tree, and the subscribers and publishers built on them."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from time import time as _now
from typing import Any, Callable, Optional

import numpy as np

from lidarloc.geometry import matrix_to_quaternion, transform_from_translation_quaternion
from lidarloc.sensor_data import CloudData, GNSSData, IMUData, Orientation, Vector3


def _resolve_topic(name: str) -> str:
    stripped = name.strip("/")
    if not stripped:
        raise ValueError("topic name must not be empty")
    return "/" + stripped


def _resolve_frame(name: str) -> str:
    stripped = name.strip("/")
    if not stripped:
        raise ValueError("frame id must not be empty")
    return stripped


@dataclass
class _Subscription:
    topic: str
    callback: Callable[[Any], None]
    queue_size: int
    _bus: "MessageBus" = field(repr=False)

    def cancel(self) -> None:
        """Stop delivering messages to this subscription."""
        self._bus._remove(self)


class MessageBus:
    """Delivers published messages to every callback subscribed to the same topic."""

    def __init__(self) -> None:
        self._subscriptions: dict[str, list[_Subscription]] = {}

    def subscribe(self, topic: str, callback: Callable[[Any], None], queue_size: int) -> _Subscription:
        """Register ``callback`` for ``topic``; a queue size of 0 means unbounded."""
        if queue_size < 0:
            raise ValueError("queue_size must not be negative")
        subscription = _Subscription(_resolve_topic(topic), callback, int(queue_size), self)
        self._subscriptions.setdefault(subscription.topic, []).append(subscription)
        return subscription

    def publish(self, topic: str, message: Any) -> int:
        """Hand ``message`` to every subscriber of ``topic`` and return how many received it."""
        receivers = list(self._subscriptions.get(_resolve_topic(topic), ()))
        for subscription in receivers:
            subscription.callback(message)
        return len(receivers)

    def _remove(self, subscription: _Subscription) -> None:
        listeners = self._subscriptions.get(subscription.topic, [])
        if subscription in listeners:
            listeners.remove(subscription)


@dataclass(frozen=True, eq=False)
class PointCloudMessage:
    """A stamped point cloud in a named frame."""

    time: float
    frame_id: str
    points: np.ndarray


@dataclass(frozen=True)
class ImuMessage:
    """A stamped inertial measurement; the orientation is ``(x, y, z, w)``."""

    time: float
    linear_acceleration: tuple[float, float, float] = (0.0, 0.0, 0.0)
    angular_velocity: tuple[float, float, float] = (0.0, 0.0, 0.0)
    orientation: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 1.0)
    frame_id: str = ""


@dataclass(frozen=True)
class NavSatFixMessage:
    """A stamped satellite fix in degrees and metres."""

    time: float
    latitude: float
    longitude: float
    altitude: float
    status: int = 0
    service: int = 0
    frame_id: str = ""


@dataclass(frozen=True)
class OdometryMessage:
    """A stamped pose of ``child_frame_id`` in ``frame_id``; the orientation is ``(x, y, z, w)``."""

    time: float
    frame_id: str
    child_frame_id: str
    position: tuple[float, float, float]
    orientation: tuple[float, float, float, float]


class TransformTree:
    """Latest known rigid transforms between frames, looked up along any chain of frames."""

    def __init__(self) -> None:
        self._edges: dict[str, dict[str, np.ndarray]] = {}
        self._stamps: dict[tuple[str, str], float] = {}

    def set_transform(self, frame_id: str, child_frame_id: str, transform, time: float) -> None:
        """Record the pose of ``child_frame_id`` in ``frame_id`` as a 4x4 matrix."""
        parent = _resolve_frame(frame_id)
        child = _resolve_frame(child_frame_id)
        if parent == child:
            raise ValueError("a frame cannot be its own parent")
        matrix = np.array(transform, dtype=float)
        if matrix.shape != (4, 4):
            raise ValueError("transform must be a 4x4 matrix")
        self._edges.setdefault(parent, {})[child] = matrix
        self._edges.setdefault(child, {})[parent] = np.linalg.inv(matrix)
        self._stamps[(parent, child)] = float(time)

    def lookup(self, frame_id: str, child_frame_id: str) -> np.ndarray:
        """Return the 4x4 transform taking ``child_frame_id`` coordinates into ``frame_id``.

        Raises LookupError when the frames are not connected.
        """
        start = _resolve_frame(frame_id)
        goal = _resolve_frame(child_frame_id)
        if start == goal:
            return np.eye(4)
        visited = {start}
        frontier = deque([(start, np.eye(4))])
        while frontier:
            frame, accumulated = frontier.popleft()
            for neighbour, step in self._edges.get(frame, {}).items():
                if neighbour in visited:
                    continue
                combined = accumulated @ step
                if neighbour == goal:
                    return combined
                visited.add(neighbour)
                frontier.append((neighbour, combined))
        raise LookupError(f"no transform from {child_frame_id!r} to {frame_id!r}")


class _BufferedSubscriber:
    def __init__(self, bus: MessageBus, topic_name: str, buff_size: int) -> None:
        self._new_data: deque = deque(maxlen=buff_size or None)
        self._subscription = bus.subscribe(topic_name, self._callback, buff_size)

    def _convert(self, message):
        raise NotImplementedError

    def _callback(self, message) -> None:
        self._new_data.append(self._convert(message))

    def parse_data(self, buffer: deque) -> None:
        """Move every measurement received so far onto the end of ``buffer``."""
        buffer.extend(self._new_data)
        self._new_data.clear()


class CloudSubscriber(_BufferedSubscriber):
    """Collects point cloud messages as CloudData."""

    def __init__(self, bus: MessageBus, topic_name: str, buff_size: int) -> None:
        super().__init__(bus, topic_name, buff_size)

    def _convert(self, message: PointCloudMessage) -> CloudData:
        return CloudData(time=message.time, points=np.array(message.points, dtype=float))

    def parse_data(self, buffer: deque) -> None:
        """Move every cloud received so far onto the end of ``buffer``."""
        super().parse_data(buffer)


class IMUSubscriber(_BufferedSubscriber):
    """Collects IMU messages as IMUData."""

    def __init__(self, bus: MessageBus, topic_name: str, buff_size: int) -> None:
        super().__init__(bus, topic_name, buff_size)

    def _convert(self, message: ImuMessage) -> IMUData:
        return IMUData(
            time=message.time,
            linear_acceleration=Vector3(*message.linear_acceleration),
            angular_velocity=Vector3(*message.angular_velocity),
            orientation=Orientation(*message.orientation),
        )

    def parse_data(self, buffer: deque) -> None:
        """Move every IMU measurement received so far onto the end of ``buffer``."""
        super().parse_data(buffer)


class GNSSSubscriber(_BufferedSubscriber):
    """Collects satellite fix messages as GNSSData."""

    def __init__(self, bus: MessageBus, topic_name: str, buff_size: int) -> None:
        super().__init__(bus, topic_name, buff_size)

    def _convert(self, message: NavSatFixMessage) -> GNSSData:
        return GNSSData(
            time=message.time,
            latitude=message.latitude,
            longitude=message.longitude,
            altitude=message.altitude,
            status=message.status,
            service=message.service,
        )

    def parse_data(self, buffer: deque) -> None:
        """Move every fix received so far onto the end of ``buffer``."""
        super().parse_data(buffer)


class TFListener:
    """Looks up the transform of one frame relative to another."""

    def __init__(self, tree: TransformTree, base_frame_id: str, child_frame_id: str) -> None:
        self._tree = tree
        self.base_frame_id = base_frame_id
        self.child_frame_id = child_frame_id

    def lookup_data(self) -> Optional[np.ndarray]:
        """Return the 4x4 child-to-base transform, or None if it is not known yet."""
        try:
            transform = self._tree.lookup(self.base_frame_id, self.child_frame_id)
        except LookupError:
            return None
        quaternion = matrix_to_quaternion(transform[:3, :3])
        return transform_from_translation_quaternion(transform[:3, 3], quaternion)


class CloudPublisher:
    """Publishes point clouds stamped with a fixed frame id."""

    def __init__(self, bus: MessageBus, topic_name: str, buff_size: int, frame_id: str) -> None:
        self._bus = bus
        self.topic_name = topic_name
        self.buff_size = buff_size
        self.frame_id = frame_id

    def publish(self, points, time: Optional[float] = None) -> PointCloudMessage:
        """Publish ``points`` (an ``(N, 3)`` array) and return the message sent."""
        message = PointCloudMessage(
            time=_now() if time is None else float(time),
            frame_id=self.frame_id,
            points=np.array(points, dtype=float).reshape(-1, 3),
        )
        self._bus.publish(self.topic_name, message)
        return message


class OdometryPublisher:
    """Publishes poses given as 4x4 transforms."""

    def __init__(
        self, bus: MessageBus, topic_name: str, base_frame_id: str, child_frame_id: str, buff_size: int
    ) -> None:
        self._bus = bus
        self.topic_name = topic_name
        self.base_frame_id = base_frame_id
        self.child_frame_id = child_frame_id
        self.buff_size = buff_size

    def publish(self, transform_matrix, time: Optional[float] = None) -> OdometryMessage:
        """Publish the pose held in ``transform_matrix`` and return the message sent."""
        matrix = np.asarray(transform_matrix, dtype=float)
        if matrix.shape != (4, 4):
            raise ValueError("transform_matrix must be 4x4")
        message = OdometryMessage(
            time=_now() if time is None else float(time),
            frame_id=self.base_frame_id,
            child_frame_id=self.child_frame_id,
            position=(float(matrix[0, 3]), float(matrix[1, 3]), float(matrix[2, 3])),
            orientation=tuple(float(v) for v in matrix_to_quaternion(matrix[:3, :3])),
        )
        self._bus.publish(self.topic_name, message)
        return message


class TFBroadcaster:
    """Writes the pose of one frame relative to another into a transform tree."""

    def __init__(self, tree: TransformTree, frame_id: str, child_frame_id: str) -> None:
        self._tree = tree
        self.frame_id = frame_id
        self.child_frame_id = child_frame_id

    def send_transform(self, pose, time: float) -> None:
        """Record ``pose``, a 4x4 transform, as the child frame's pose at ``time``."""
        matrix = np.asarray(pose, dtype=float)
        if matrix.shape != (4, 4):
            raise ValueError("pose must be 4x4")
        quaternion = matrix_to_quaternion(matrix[:3, :3])
        clean = transform_from_translation_quaternion(matrix[:3, 3], quaternion)
        self._tree.set_transform(self.frame_id, self.child_frame_id, clean, time)