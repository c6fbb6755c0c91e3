import numpy as np
import pytest

from lidarloc.geometry import quaternion_to_matrix
from lidarloc.kitti_pipeline import HelloKittiNode, imu_to_map_transform
from lidarloc.messaging import (
    ImuMessage,
    MessageBus,
    NavSatFixMessage,
    PointCloudMessage,
    TransformTree,
)
from lidarloc.sensor_data import GNSSData, IMUData, Orientation

LAT, LON, ALT = 49.0, 8.4, 110.0


def _lidar_to_imu(offset_x=1.0):
    transform = np.eye(4)
    transform[0, 3] = offset_x
    return transform


@pytest.fixture
def setup():
    bus = MessageBus()
    tree = TransformTree()
    node = HelloKittiNode(bus, tree)
    odoms, clouds = [], []
    bus.subscribe("lidar_odom", odoms.append, 0)
    bus.subscribe("current_scan", clouds.append, 0)
    return bus, tree, node, odoms, clouds


def _publish_frame(bus, time, points, lat=LAT):
    bus.publish("/kitti/velo/pointcloud", PointCloudMessage(time, "velo_link", np.array(points, dtype=float)))
    bus.publish("/kitti/oxts/imu", ImuMessage(time=time, orientation=(0.0, 0.0, 0.0, 1.0)))
    bus.publish("/kitti/oxts/gps/fix", NavSatFixMessage(time=time, latitude=lat, longitude=LON, altitude=ALT))


def test_imu_to_map_at_origin_has_zero_translation():
    gnss = GNSSData(latitude=LAT, longitude=LON, altitude=ALT)
    gnss.init_origin_position()
    s = np.sqrt(0.5)
    imu = IMUData(orientation=Orientation(0.0, 0.0, s, s))
    transform = imu_to_map_transform(gnss, imu)
    assert np.allclose(transform[:3, 3], 0.0, atol=1e-6)
    assert np.allclose(transform[:3, :3], quaternion_to_matrix(0.0, 0.0, s, s))
    assert np.allclose(transform[3], [0.0, 0.0, 0.0, 1.0])


def test_imu_to_map_north_offset_updates_fix():
    origin = GNSSData(latitude=LAT, longitude=LON, altitude=ALT)
    origin.init_origin_position()
    gnss = GNSSData(latitude=LAT + 0.001, longitude=LON, altitude=ALT)
    imu = IMUData(orientation=Orientation(0.0, 0.0, 0.0, 1.0))
    transform = imu_to_map_transform(gnss, imu)
    assert transform[1, 3] > 50.0
    assert abs(transform[0, 3]) < 1e-6
    assert gnss.local_n == pytest.approx(transform[1, 3])


def test_nothing_published_without_calibration(setup):
    bus, tree, node, odoms, clouds = setup
    _publish_frame(bus, 1.0, [[2.0, 0.0, 0.0]])
    assert node.spin_once() == []
    assert node.spin_once() == []
    assert odoms == [] and clouds == []
    assert len(node.cloud_data_buff) == 1


def test_matched_frame_is_published_in_map_frame(setup):
    bus, tree, node, odoms, clouds = setup
    tree.set_transform("imu_link", "velo_link", _lidar_to_imu(), 0.0)
    assert node.spin_once() == []
    assert node.transform_received

    _publish_frame(bus, 1.0, [[2.0, 0.0, 0.0], [0.0, 3.0, 1.0]])
    poses = node.spin_once()
    assert len(poses) == 1
    pose = poses[0]
    assert np.allclose(pose[:3, 3], [1.0, 0.0, 0.0], atol=1e-6)
    assert np.allclose(pose[:3, :3], np.eye(3))

    assert len(clouds) == 1
    assert clouds[0].frame_id == "/map"
    assert np.allclose(clouds[0].points, [[3.0, 0.0, 0.0], [1.0, 3.0, 1.0]], atol=1e-6)

    assert len(odoms) == 1
    assert odoms[0].frame_id == "/map"
    assert odoms[0].child_frame_id == "velo_link"
    assert np.allclose(odoms[0].position, pose[:3, 3])

    assert np.allclose(tree.lookup("map", "velo_link"), pose, atol=1e-9)


def test_cloud_older_than_imu_is_dropped(setup):
    bus, tree, node, odoms, clouds = setup
    tree.set_transform("imu_link", "velo_link", _lidar_to_imu(), 0.0)
    node.spin_once()
    bus.publish("/kitti/velo/pointcloud", PointCloudMessage(1.0, "velo_link", np.ones((1, 3))))
    bus.publish("/kitti/oxts/imu", ImuMessage(time=1.2, orientation=(0.0, 0.0, 0.0, 1.0)))
    bus.publish("/kitti/oxts/gps/fix", NavSatFixMessage(time=1.2, latitude=LAT, longitude=LON, altitude=ALT))
    assert node.spin_once() == []
    assert len(node.cloud_data_buff) == 0
    assert len(node.imu_data_buff) == 1
    assert odoms == []


def test_stale_imu_and_gnss_are_skipped(setup):
    bus, tree, node, odoms, clouds = setup
    tree.set_transform("imu_link", "velo_link", _lidar_to_imu(), 0.0)
    node.spin_once()
    bus.publish("/kitti/oxts/imu", ImuMessage(time=0.5, orientation=(0.0, 0.0, 0.0, 1.0)))
    bus.publish("/kitti/oxts/gps/fix", NavSatFixMessage(time=0.5, latitude=LAT, longitude=LON, altitude=ALT))
    _publish_frame(bus, 1.0, [[2.0, 0.0, 0.0]], lat=LAT + 0.001)
    poses = node.spin_once()
    assert len(poses) == 1
    assert np.allclose(poses[0][:3, 3], [1.0, 0.0, 0.0], atol=1e-6)
    assert not node.imu_data_buff and not node.gnss_data_buff


def test_second_frame_moves_relative_to_first(setup):
    bus, tree, node, odoms, clouds = setup
    tree.set_transform("imu_link", "velo_link", _lidar_to_imu(0.0), 0.0)
    node.spin_once()
    _publish_frame(bus, 1.0, [[2.0, 0.0, 0.0]])
    _publish_frame(bus, 1.1, [[2.0, 0.0, 0.0]], lat=LAT + 0.001)
    poses = node.spin_once()
    assert len(poses) == 2
    assert np.allclose(poses[0][:3, 3], 0.0, atol=1e-6)
    assert poses[1][1, 3] > 50.0