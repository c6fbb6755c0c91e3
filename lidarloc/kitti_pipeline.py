"""Georeferencing of lidar sweeps with time-matched IMU and satellite fixes."""

from __future__ import annotations

from collections import deque
from typing import Optional

import numpy as np

from lidarloc.messaging import (
    CloudPublisher,
    CloudSubscriber,
    GNSSSubscriber,
    IMUSubscriber,
    MessageBus,
    OdometryPublisher,
    TFBroadcaster,
    TFListener,
    TransformTree,
)
from lidarloc.pointcloud import transform_points
from lidarloc.sensor_data import CloudData, GNSSData, IMUData

MAX_TIME_OFFSET = 0.05

CLOUD_TOPIC = "/kitti/velo/pointcloud"
IMU_TOPIC = "/kitti/oxts/imu"
GNSS_TOPIC = "/kitti/oxts/gps/fix"
SCAN_TOPIC = "current_scan"
ODOMETRY_TOPIC = "lidar_odom"


def imu_to_map_transform(gnss_data: GNSSData, imu_data: IMUData) -> np.ndarray:
    """Return the 4x4 pose of the IMU in the map frame.

    The position comes from the fix in the shared local frame, which is refreshed on
    ``gnss_data``; the orientation comes from the IMU.
    """
    gnss_data.update_xyz()
    transform = np.eye(4)
    transform[0, 3] = gnss_data.local_e
    transform[1, 3] = gnss_data.local_n
    transform[2, 3] = gnss_data.local_u
    transform[:3, :3] = imu_data.orientation_matrix()
    return transform


class HelloKittiNode:
    """Pairs each lidar sweep with an IMU and satellite fix and publishes it in the map frame."""

    def __init__(self, bus: MessageBus, tf_tree: TransformTree) -> None:
        self.lidar_to_imu_tf_sub = TFListener(tf_tree, "/imu_link", "/velo_link")
        self.lidar_to_map_tf_pub = TFBroadcaster(tf_tree, "/map", "/velo_link")

        self.cloud_sub = CloudSubscriber(bus, CLOUD_TOPIC, 100000)
        self.imu_sub = IMUSubscriber(bus, IMU_TOPIC, 1000000)
        self.gnss_sub = GNSSSubscriber(bus, GNSS_TOPIC, 1000000)

        self.cloud_pub = CloudPublisher(bus, SCAN_TOPIC, 100, "/map")
        self.odom_pub = OdometryPublisher(bus, ODOMETRY_TOPIC, "/map", "velo_link", 100)

        self.cloud_data_buff: deque[CloudData] = deque()
        self.imu_data_buff: deque[IMUData] = deque()
        self.gnss_data_buff: deque[GNSSData] = deque()

        self.lidar_to_imu: np.ndarray = np.eye(4)
        self.transform_received = False
        self.gnss_origin_position_inited = False

    def spin_once(self) -> list[np.ndarray]:
        """Process what has arrived so far and return the lidar poses published in this pass."""
        self.cloud_sub.parse_data(self.cloud_data_buff)
        self.imu_sub.parse_data(self.imu_data_buff)
        self.gnss_sub.parse_data(self.gnss_data_buff)

        if not self.transform_received:
            found: Optional[np.ndarray] = self.lidar_to_imu_tf_sub.lookup_data()
            if found is not None:
                self.lidar_to_imu = found
                self.transform_received = True
            return []

        poses: list[np.ndarray] = []
        while self.cloud_data_buff and self.imu_data_buff and self.gnss_data_buff:
            cloud_data = self.cloud_data_buff[0]
            imu_data = self.imu_data_buff[0]
            gnss_data = self.gnss_data_buff[0]

            d_time = cloud_data.time - imu_data.time
            if d_time < -MAX_TIME_OFFSET:
                self.cloud_data_buff.popleft()
                continue
            if d_time > MAX_TIME_OFFSET:
                self.imu_data_buff.popleft()
                self.gnss_data_buff.popleft()
                continue

            self.cloud_data_buff.popleft()
            self.imu_data_buff.popleft()
            self.gnss_data_buff.popleft()

            if not self.gnss_origin_position_inited:
                gnss_data.init_origin_position()
                self.gnss_origin_position_inited = True

            lidar_odometry = imu_to_map_transform(gnss_data, imu_data) @ self.lidar_to_imu
            cloud_data.points = transform_points(cloud_data.points, lidar_odometry)

            self.cloud_pub.publish(cloud_data.points)
            self.odom_pub.publish(lidar_odometry)
            self.lidar_to_map_tf_pub.send_transform(lidar_odometry, cloud_data.time)
            poses.append(lidar_odometry)

        return poses