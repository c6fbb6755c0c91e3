"""Ground-truth trajectory generation for evaluating lidar odometry against IMU and GNSS."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, TextIO

import numpy as np

from lidarloc.geometry import transform_from_translation_quaternion
from lidarloc.messaging import (
    GNSSSubscriber,
    IMUSubscriber,
    MessageBus,
    OdometryMessage,
    OdometryPublisher,
    TFListener,
    TransformTree,
)
from lidarloc.sensor_data import GNSSData, IMUData, sync_gnss_data, sync_imu_data

MAX_TIME_OFFSET = 0.05
GROUND_TRUTH_FILE = "ground_truth.txt"
LASER_ODOM_FILE = "laser_odom.txt"


def format_pose_row(pose) -> str:
    """Return the top three rows of a 4x4 pose as twelve space-separated numbers."""
    matrix = np.asarray(pose, dtype=float)
    if matrix.shape != (4, 4):
        raise ValueError("pose must be a 4x4 matrix")
    return " ".join(format(float(v), "g") for v in matrix[:3, :].ravel())


@dataclass(frozen=True)
class EvaluationConfig:
    """Topics and frames used by the evaluation flow."""

    odometry_topic: str = "/odometry/lidar/scan_to_scan"
    odometry_queue_size: int = 100000
    imu_topic: str = "/kitti/oxts/imu"
    imu_queue_size: int = 1000000
    imu_frame_id: str = "imu_link"
    gnss_topic: str = "/kitti/oxts/gps/fix"
    gnss_queue_size: int = 1000000
    velodyne_frame_id: str = "velo_link"
    ground_truth_topic: str = "/odometry/ground_truth"
    ground_truth_frame_id: str = "map"
    ground_truth_child_frame_id: str = "velo_link"
    ground_truth_queue_size: int = 100


@dataclass
class _PoseData:
    time: float
    pose: np.ndarray


class _OdometrySubscriber:
    def __init__(self, bus: MessageBus, topic_name: str, buff_size: int) -> None:
        self._new_data: deque[_PoseData] = deque(maxlen=buff_size or None)
        bus.subscribe(topic_name, self._callback, buff_size)

    def _callback(self, message: OdometryMessage) -> None:
        pose = transform_from_translation_quaternion(message.position, message.orientation)
        self._new_data.append(_PoseData(message.time, pose))

    def parse_data(self, buffer: deque) -> None:
        buffer.extend(self._new_data)
        self._new_data.clear()


class EvaluationFlow:
    """Aligns GNSS/IMU poses with lidar odometry and writes both trajectories to text files."""

    def __init__(
        self,
        bus: MessageBus,
        tf_tree: TransformTree,
        output_dir,
        config: Optional[EvaluationConfig] = None,
    ) -> None:
        self.config = config if config is not None else EvaluationConfig()
        self.output_dir = Path(output_dir)
        cfg = self.config

        self._odom_sub = _OdometrySubscriber(bus, cfg.odometry_topic, cfg.odometry_queue_size)
        self._lidar_to_imu_sub = TFListener(tf_tree, cfg.imu_frame_id, cfg.velodyne_frame_id)
        self._imu_sub = IMUSubscriber(bus, cfg.imu_topic, cfg.imu_queue_size)
        self._gnss_sub = GNSSSubscriber(bus, cfg.gnss_topic, cfg.gnss_queue_size)
        self._ground_truth_pub = OdometryPublisher(
            bus,
            cfg.ground_truth_topic,
            cfg.ground_truth_frame_id,
            cfg.ground_truth_child_frame_id,
            cfg.ground_truth_queue_size,
        )

        self._odom_buff: deque[_PoseData] = deque()
        self._unsynced_imu: deque[IMUData] = deque()
        self._unsynced_gnss: deque[GNSSData] = deque()
        self._imu_buff: deque[IMUData] = deque()
        self._gnss_buff: deque[GNSSData] = deque()

        self._evaluator_inited = False
        self._calibration_received = False
        self._gnss_inited = False
        self._is_synced = False

        self.lidar_to_imu = np.eye(4)
        self._gnss_to_odom = np.eye(4)
        self.laser_odometry = np.eye(4)
        self.gnss_odometry = np.eye(4)

        self._current_odom: Optional[_PoseData] = None
        self._current_imu: Optional[IMUData] = None
        self._current_gnss: Optional[GNSSData] = None

        self._ground_truth_file: Optional[TextIO] = None
        self._laser_odom_file: Optional[TextIO] = None

    def __enter__(self) -> "EvaluationFlow":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def run(self) -> bool:
        """Process all matched measurements; return False while prerequisites are missing."""
        if not self._read_data():
            return False
        if not self._init_calibration():
            return False
        if not self._init_gnss():
            return False

        while self._has_data():
            if not self._valid_data():
                continue
            self.laser_odometry = self._current_odom.pose
            self._update_gnss_odometry()
            self._save_trajectory()
        return True

    def close(self) -> None:
        """Close the trajectory files."""
        for handle in (self._ground_truth_file, self._laser_odom_file):
            if handle is not None:
                handle.close()
        self._ground_truth_file = None
        self._laser_odom_file = None

    def _read_data(self) -> bool:
        self._odom_sub.parse_data(self._odom_buff)
        self._imu_sub.parse_data(self._unsynced_imu)
        self._gnss_sub.parse_data(self._unsynced_gnss)

        if not self._odom_buff:
            return False

        laser_odom_time = self._odom_buff[0].time
        synced_imu = sync_imu_data(self._unsynced_imu, laser_odom_time)
        synced_gnss = sync_gnss_data(self._unsynced_gnss, laser_odom_time)
        if synced_imu is not None:
            self._imu_buff.append(synced_imu)
        if synced_gnss is not None:
            self._gnss_buff.append(synced_gnss)

        if not self._evaluator_inited:
            if synced_imu is None or synced_gnss is None:
                self._odom_buff.popleft()
                return False
            self._evaluator_inited = True
        return True

    def _init_calibration(self) -> bool:
        if not self._calibration_received:
            found = self._lidar_to_imu_sub.lookup_data()
            if found is not None:
                self.lidar_to_imu = found
                self._calibration_received = True
        return self._calibration_received

    def _init_gnss(self) -> bool:
        if not self._gnss_inited:
            if not self._gnss_buff:
                return False
            self._gnss_buff[0].init_origin_position()
            self._gnss_inited = True
        return self._gnss_inited

    def _has_data(self) -> bool:
        return bool(self._odom_buff and self._imu_buff and self._gnss_buff)

    def _valid_data(self) -> bool:
        self._current_odom = self._odom_buff[0]
        self._current_imu = self._imu_buff[0]
        self._current_gnss = self._gnss_buff[0]

        d_time = self._current_odom.time - self._current_imu.time
        if d_time < -MAX_TIME_OFFSET:
            self._odom_buff.popleft()
            return False
        if d_time > MAX_TIME_OFFSET:
            self._imu_buff.popleft()
            self._gnss_buff.popleft()
            return False

        self._odom_buff.popleft()
        self._imu_buff.popleft()
        self._gnss_buff.popleft()
        return True

    def _update_gnss_odometry(self) -> None:
        gnss = self._current_gnss
        gnss.update_xyz()
        odometry = np.eye(4)
        odometry[:3, 3] = (gnss.local_e, gnss.local_n, gnss.local_u)
        odometry[:3, :3] = self._current_imu.orientation_matrix()
        odometry = odometry @ self.lidar_to_imu

        if not self._is_synced:
            self._gnss_to_odom = self.laser_odometry @ np.linalg.inv(odometry)
            self._is_synced = True

        self.gnss_odometry = self._gnss_to_odom @ odometry
        self._ground_truth_pub.publish(self.gnss_odometry)

    def _save_trajectory(self) -> None:
        if self._ground_truth_file is None or self._laser_odom_file is None:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            self._ground_truth_file = open(self.output_dir / GROUND_TRUTH_FILE, "w", encoding="utf-8")
            self._laser_odom_file = open(self.output_dir / LASER_ODOM_FILE, "w", encoding="utf-8")

        self._ground_truth_file.write(format_pose_row(self.gnss_odometry) + "\n")
        self._laser_odom_file.write(format_pose_row(self.laser_odometry) + "\n")
        self._ground_truth_file.flush()
        self._laser_odom_file.flush()