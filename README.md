# lidarloc

Building blocks for lidar localization on KITTI-style data, built on NumPy.
Point clouds are NumPy arrays of shape `(N, 3)` (x, y, z) or `(N, 4)`
(x, y, z, intensity).

## Modules

- `lidarloc.geometry` – `quaternion_to_matrix`, `matrix_to_quaternion`,
  `euler_ypr_from_quaternion` (yaw, pitch, roll for the Z-Y-X convention) and
  `transform_from_translation_quaternion`, which builds a 4×4 transform.
  Quaternions are `(x, y, z, w)`.
- `lidarloc.local_cartesian` – `geodetic_to_ecef` and `LocalCartesian`, a
  local east-north-up frame on the WGS84 ellipsoid (`reset`, `forward`).
- `lidarloc.sensor_data` – the records `Vector3`, `Orientation`, `IMUData`,
  `GNSSData` and `CloudData`, and `sync_imu_data` / `sync_gnss_data`, which
  interpolate a measurement at a given time.
- `lidarloc.pointcloud` – `remove_nan`, `filter_by_range`,
  `voxel_grid_filter` (centroid per voxel) and `transform_points`.
- `lidarloc.feature_extraction` – `DataPretreat`, which sorts a sweep into
  scan lines and picks sharp edge and flat surface points, configured by
  `ScanRegistrationConfig`; results come back as `FeatureClouds`.
- `lidarloc.scan_registration` – `LaserScanRegistration`, the same feature
  extraction with fixed parameters and an optional start-up delay, returning
  `RegisteredScan` (which also holds each scan line separately), and
  `remove_closed_points`.
- `lidarloc.messaging` – an in-process `MessageBus` and `TransformTree`, the
  message types `PointCloudMessage`, `ImuMessage`, `NavSatFixMessage` and
  `OdometryMessage`, and the subscribers and publishers built on them
  (`CloudSubscriber`, `IMUSubscriber`, `GNSSSubscriber`, `TFListener`,
  `CloudPublisher`, `OdometryPublisher`, `TFBroadcaster`).
- `lidarloc.kitti_pipeline` – `HelloKittiNode`, which places every lidar sweep
  in the map frame using a matched IMU measurement and satellite fix, and
  `imu_to_map_transform`.
- `lidarloc.evaluation` – `EvaluationFlow`, which aligns GNSS/IMU poses with
  lidar odometry and writes both trajectories to text files, with
  `EvaluationConfig` and `format_pose_row`.

## Requirements

Python 3.10 or later and NumPy.

## Converting GNSS fixes to local coordinates

```python
from lidarloc.local_cartesian import LocalCartesian

origin = LocalCartesian(49.0, 8.4, 110.0)
east, north, up = origin.forward(49.001, 8.401, 112.0)
```

`GNSSData` shares one such frame between all fixes: `init_origin_position()`
makes a fix the origin, and `update_xyz()` fills in `local_e`, `local_n` and
`local_u` (logging a warning if no origin has been set yet).

## Synchronising IMU data to a lidar timestamp

```python
from collections import deque
from lidarloc.sensor_data import IMUData, Orientation, sync_imu_data

unsynced = deque([
    IMUData(time=0.00, orientation=Orientation(w=1.0)),
    IMUData(time=0.01, orientation=Orientation(w=1.0)),
])
synced = sync_imu_data(unsynced, 0.005)   # interpolated IMUData, or None
```

Interpolation succeeds only when the sync time lies between the first two
buffered samples and neither is more than 0.2 s away. Samples that are too old
are removed from the deque. The interpolated orientation is normalised, so a
zero quaternion raises `ValueError`. `sync_gnss_data` works the same way for
`GNSSData`.

## Extracting LOAM features

```python
import numpy as np
from lidarloc.feature_extraction import DataPretreat, ScanRegistrationConfig

config = ScanRegistrationConfig.from_mapping({
    "scan_period": 0.1,
    "num_scans": 64,
    "min_range": 0.1,
    "neighborhood_size": 5,
    "num_sectors": 6,
    "filter": {"surf_less_flat": {"leaf_size": [0.2, 0.2, 0.2]}},
})
pretreat = DataPretreat(config)

points = np.load("scan.npy")          # (N, 3) array of x, y, z
features = pretreat.update(points)    # FeatureClouds
```

`FeatureClouds` holds the scan-sorted cloud with the sharp corners, less-sharp
corners, flat surface points and voxel-downsampled less-flat points. Each row
is `x, y, z, intensity`, where the intensity is the scan line plus the point's
relative time within the sweep. Only 16, 32 and 64 line sensors are supported;
any other count raises `ValueError`.

`LaserScanRegistration(num_scans, minimum_range, system_delay).handle(points)`
does the same with a scan period of 0.1 s, neighbourhoods of 5 points, 6
sectors and a 0.2 m leaf size; it returns `None` for the sweeps that fall in
the start-up delay.

## Running the KITTI pipeline in process

```python
import numpy as np
from lidarloc.kitti_pipeline import HelloKittiNode
from lidarloc.messaging import (
    ImuMessage, MessageBus, NavSatFixMessage, PointCloudMessage, TransformTree,
)

bus = MessageBus()
tf_tree = TransformTree()
node = HelloKittiNode(bus, tf_tree)

tf_tree.set_transform("imu_link", "velo_link", np.eye(4), 0.0)
node.spin_once()        # picks up the lidar-to-IMU calibration, returns []

points = np.array([[1.0, 0.0, 0.0], [0.0, 2.0, 0.0]])
bus.publish("/kitti/velo/pointcloud", PointCloudMessage(0.0, "velo_link", points))
bus.publish("/kitti/oxts/imu", ImuMessage(0.0))
bus.publish("/kitti/oxts/gps/fix", NavSatFixMessage(0.0, 49.0, 8.4, 110.0))

poses = node.spin_once()   # list of 4x4 lidar poses in the map frame
```

A sweep is matched with the IMU measurement and fix at the head of their queues
when their times differ by at most 0.05 s; otherwise the older side is dropped.
The first matched fix becomes the origin of the local frame. Each matched sweep
is transformed into the map frame and published on `current_scan`, its pose on
`lidar_odom`, and the `map` → `velo_link` transform is written to the tree.

Topic names are normalised to a single leading slash and frame ids have their
slashes stripped, so `"imu_link"` and `"/imu_link"` name the same frame.
`TransformTree.lookup` follows any chain of known transforms and raises
`LookupError` when the frames are not connected.

## Evaluating laser odometry

```python
from lidarloc.evaluation import EvaluationFlow

with EvaluationFlow(bus, tf_tree, "trajectory") as flow:
    flow.run()
```

`EvaluationFlow` listens for `OdometryMessage`s on
`/odometry/lidar/scan_to_scan` and for IMU and GNSS messages (see
`EvaluationConfig` for all topics and frames). It interpolates IMU and GNSS at
each odometry time, aligns the GNSS/IMU trajectory with the first odometry
pose, publishes it on `/odometry/ground_truth` and appends one row per pose to
`ground_truth.txt` and `laser_odom.txt` in the output directory: the top three
rows of the 4×4 pose as twelve space-separated numbers (see
`format_pose_row`). `run()` returns `False` while data, calibration or the
GNSS origin are still missing. Call `close()`, or use the flow as a context
manager, to close the files.

## What the package does not do

- It does not connect to any robotics middleware: messages travel only through
  the in-process `MessageBus` and `TransformTree`, and feeding them (for
  example from recorded data) is up to the caller.
- It has no command-line programs; everything is used from Python.
- It does not read configuration files; `ScanRegistrationConfig.from_mapping`
  takes an already parsed mapping.
- It estimates no motion between sweeps and builds no map: there is no
  scan-to-scan or scan-to-map registration. Poses come from GNSS/IMU, and
  odometry to evaluate must be published by something else.