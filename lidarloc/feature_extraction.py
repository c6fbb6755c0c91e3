"""Scan-line sorting and edge/plane feature extraction for multi-beam lidar sweeps."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Mapping, Optional

import numpy as np

from lidarloc.pointcloud import _as_cloud, filter_by_range, voxel_grid_filter

logger = logging.getLogger(__name__)

SUPPORTED_SCAN_COUNTS = (16, 32, 64)
CURVATURE_THRESHOLD = 0.1
NEIGHBOUR_GAP_SQ = 0.05
MAX_SHARP_PER_SECTOR = 2
MAX_LESS_SHARP_PER_SECTOR = 20
MAX_FLAT_PER_SECTOR = 4


class FeatureLabel(IntEnum):
    """Classification of a point by the local smoothness of its scan line."""

    CORNER_SHARP = 2
    CORNER_LESS_SHARP = 1
    SURF_LESS_FLAT = 0
    SURF_FLAT = -1


def scan_id_for_angle(angle: float, num_scans: int) -> Optional[int]:
    """Return the scan line of a point at vertical ``angle`` degrees, or None if it is out of range."""
    if num_scans == 16:
        scan_id = int((angle + 15) / 2 + 0.5)
        return scan_id if 0 <= scan_id <= num_scans - 1 else None
    if num_scans == 32:
        scan_id = int((angle + 92.0 / 3.0) * 3.0 / 4.0)
        return scan_id if 0 <= scan_id <= num_scans - 1 else None
    if num_scans == 64:
        if angle >= -8.83:
            scan_id = int((2 - angle) * 3.0 + 0.5)
        else:
            scan_id = num_scans // 2 + int((-8.83 - angle) * 2.0 + 0.5)
        if angle > 2 or angle < -24.33 or scan_id > 50 or scan_id < 0:
            return None
        return scan_id
    raise ValueError(f"unsupported number of scan lines: {num_scans}")


@dataclass(frozen=True)
class ScanRegistrationConfig:
    """Parameters of scan sorting and feature extraction."""

    scan_period: float = 0.1
    num_scans: int = 16
    min_range: float = 0.1
    neighborhood_size: int = 5
    num_sectors: int = 6
    leaf_size: tuple = (0.2, 0.2, 0.2)

    def __post_init__(self) -> None:
        if self.num_scans not in SUPPORTED_SCAN_COUNTS:
            raise ValueError(f"wrong scan number {self.num_scans}")
        if self.neighborhood_size < 1:
            raise ValueError("neighborhood_size must be at least 1")
        if self.num_sectors < 1:
            raise ValueError("num_sectors must be at least 1")
        leaf = tuple(float(v) for v in self.leaf_size)
        if len(leaf) != 3 or any(v <= 0.0 for v in leaf):
            raise ValueError("leaf_size must be three positive numbers")
        object.__setattr__(self, "leaf_size", leaf)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, Any]) -> "ScanRegistrationConfig":
        """Build a configuration from a parsed ``param`` section of the front-end settings."""
        return cls(
            scan_period=float(mapping["scan_period"]),
            num_scans=int(mapping["num_scans"]),
            min_range=float(mapping["min_range"]),
            neighborhood_size=int(mapping["neighborhood_size"]),
            num_sectors=int(mapping["num_sectors"]),
            leaf_size=tuple(mapping["filter"]["surf_less_flat"]["leaf_size"]),
        )


def _empty(width: int) -> np.ndarray:
    return np.empty((0, width))


@dataclass
class FeatureClouds:
    """A scan-sorted cloud and the feature points picked from it; rows are ``x, y, z, intensity``."""

    cloud: np.ndarray = field(default_factory=lambda: _empty(4))
    corner_sharp: np.ndarray = field(default_factory=lambda: _empty(4))
    corner_less_sharp: np.ndarray = field(default_factory=lambda: _empty(4))
    surf_flat: np.ndarray = field(default_factory=lambda: _empty(4))
    surf_less_flat: np.ndarray = field(default_factory=lambda: _empty(4))


@dataclass(frozen=True)
class _ScanBounds:
    starts: tuple
    ends: tuple
    size: int


class DataPretreat:
    """Sorts a lidar sweep into scan lines and extracts sharp edges and flat surfaces."""

    def __init__(self, config: Optional[ScanRegistrationConfig] = None) -> None:
        self.config = config if config is not None else ScanRegistrationConfig()
        self._bounds: Optional[_ScanBounds] = None

    def update(self, points) -> FeatureClouds:
        """Filter a raw sweep by range, sort it by scan line and extract its features."""
        filtered = filter_by_range(points, self.config.min_range)
        cloud = self.sort_by_scan(filtered[:, :3])
        return self.extract_features(cloud)

    def sort_by_scan(self, points) -> np.ndarray:
        """Return the points grouped by scan line as ``x, y, z, intensity`` rows.

        The intensity holds the scan line plus the relative time of the point within the sweep.
        Points outside the vertical field of view are dropped.
        """
        cfg = self.config
        cloud = _as_cloud(points)[:, :3]
        scans: list[list[tuple[float, float, float, float]]] = [[] for _ in range(cfg.num_scans)]

        if len(cloud):
            start_x, start_y = float(cloud[0, 0]), float(cloud[0, 1])
            end_x, end_y = float(cloud[-1, 0]), float(cloud[-1, 1])
            start_yaw = -math.atan2(start_y, start_x)
            end_yaw = -math.atan2(end_y, end_x) + 2 * math.pi
            if end_yaw - start_yaw > 3 * math.pi:
                end_yaw -= 2 * math.pi
            elif end_yaw - start_yaw < math.pi:
                end_yaw += 2 * math.pi

            half_passed = False
            for x, y, z in cloud.tolist():
                angle = math.degrees(math.atan2(z, math.hypot(x, y)))
                scan_id = scan_id_for_angle(angle, cfg.num_scans)
                if scan_id is None:
                    continue

                yaw = -math.atan2(y, x)
                if not half_passed:
                    if yaw < start_yaw - math.pi / 2:
                        yaw += 2 * math.pi
                    elif yaw > start_yaw + math.pi * 3 / 2:
                        yaw -= 2 * math.pi
                    if yaw - start_yaw > math.pi:
                        half_passed = True
                else:
                    yaw += 2 * math.pi
                    if yaw < end_yaw - math.pi * 3 / 2:
                        yaw += 2 * math.pi
                    elif yaw > end_yaw + math.pi / 2:
                        yaw -= 2 * math.pi

                scan_time = cfg.scan_period * (yaw - start_yaw) / (end_yaw - start_yaw)
                scans[scan_id].append((x, y, z, scan_id + scan_time))

        n = cfg.neighborhood_size
        starts, ends, rows = [], [], []
        for scan in scans:
            starts.append(len(rows) + n)
            rows.extend(scan)
            ends.append(len(rows) - n - 1)

        self._bounds = _ScanBounds(tuple(starts), tuple(ends), len(rows))
        return np.array(rows, dtype=float).reshape(-1, 4)

    def _curvature(self, xyz: np.ndarray) -> np.ndarray:
        n = self.config.neighborhood_size
        size = len(xyz)
        curvature = np.zeros(size)
        if size <= 2 * n:
            return curvature
        prefix = np.vstack([np.zeros((1, 3)), np.cumsum(xyz, axis=0)])
        centres = np.arange(n, size - n)
        window = prefix[centres + n + 1] - prefix[centres - n]
        diff = window - (2 * n + 1) * xyz[centres]
        curvature[centres] = np.einsum("ij,ij->i", diff, diff)
        return curvature

    def _pick_neighbourhood(self, xyz: np.ndarray, picked: np.ndarray, index: int) -> None:
        n = self.config.neighborhood_size
        size = len(xyz)
        for offset in range(1, n + 1):
            i = index + offset
            if i >= size:
                break
            gap = xyz[i] - xyz[i - 1]
            if float(gap @ gap) > NEIGHBOUR_GAP_SQ:
                break
            picked[i] = 1
        for offset in range(1, n + 1):
            i = index - offset
            if i < 0:
                break
            gap = xyz[i] - xyz[i + 1]
            if float(gap @ gap) > NEIGHBOUR_GAP_SQ:
                break
            picked[i] = 1

    def extract_features(self, cloud) -> FeatureClouds:
        """Pick sharp edge and flat surface points from a cloud returned by ``sort_by_scan``."""
        cloud = np.asarray(cloud, dtype=float)
        bounds = self._bounds
        if bounds is None or cloud.ndim != 2 or len(cloud) != bounds.size:
            raise RuntimeError("extract_features needs the cloud last returned by sort_by_scan")
        cfg = self.config
        width = cloud.shape[1] if cloud.ndim == 2 and cloud.shape[1] >= 3 else 4
        xyz = cloud[:, :3]

        curvature = self._curvature(xyz)
        order = np.arange(len(cloud))
        picked = np.zeros(len(cloud), dtype=np.int8)
        label = np.zeros(len(cloud), dtype=np.int8)

        corner_sharp: list[np.ndarray] = []
        corner_less_sharp: list[np.ndarray] = []
        surf_flat: list[np.ndarray] = []
        less_flat_parts: list[np.ndarray] = []

        for start, end in zip(bounds.starts, bounds.ends):
            if end - start < cfg.num_sectors:
                continue
            less_flat_scan: list[np.ndarray] = []
            span = end - start
            for j in range(cfg.num_sectors):
                sp = start + j * span // cfg.num_sectors
                ep = start + (j + 1) * span // cfg.num_sectors - 1
                segment = order[sp : ep + 1]
                order[sp : ep + 1] = segment[np.argsort(curvature[segment], kind="stable")]
                sector = order[sp : ep + 1].tolist()

                num_corners = 0
                for ind in reversed(sector):
                    if picked[ind] != 0 or curvature[ind] <= CURVATURE_THRESHOLD:
                        continue
                    num_corners += 1
                    if num_corners <= MAX_SHARP_PER_SECTOR:
                        label[ind] = FeatureLabel.CORNER_SHARP
                        corner_sharp.append(cloud[ind])
                        corner_less_sharp.append(cloud[ind])
                    elif num_corners <= MAX_LESS_SHARP_PER_SECTOR:
                        label[ind] = FeatureLabel.CORNER_LESS_SHARP
                        corner_less_sharp.append(cloud[ind])
                    else:
                        break
                    picked[ind] = 1
                    self._pick_neighbourhood(xyz, picked, ind)

                num_surf = 0
                for ind in sector:
                    if picked[ind] != 0 or curvature[ind] >= CURVATURE_THRESHOLD:
                        continue
                    label[ind] = FeatureLabel.SURF_FLAT
                    surf_flat.append(cloud[ind])
                    num_surf += 1
                    if num_surf >= MAX_FLAT_PER_SECTOR:
                        break
                    picked[ind] = 1
                    self._pick_neighbourhood(xyz, picked, ind)

                less_flat_scan.extend(cloud[k] for k in range(sp, ep + 1) if label[k] <= 0)

            if less_flat_scan:
                less_flat_parts.append(voxel_grid_filter(np.array(less_flat_scan), cfg.leaf_size))

        def stack(rows: list[np.ndarray]) -> np.ndarray:
            return np.array(rows, dtype=float).reshape(-1, width)

        surf_less_flat = np.vstack(less_flat_parts) if less_flat_parts else _empty(width)
        return FeatureClouds(
            cloud=cloud,
            corner_sharp=stack(corner_sharp),
            corner_less_sharp=stack(corner_less_sharp),
            surf_flat=stack(surf_flat),
            surf_less_flat=surf_less_flat,
        )