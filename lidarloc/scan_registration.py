"""Registration of raw lidar sweeps into scan lines and edge/plane feature clouds."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from lidarloc.feature_extraction import DataPretreat, ScanRegistrationConfig
from lidarloc.pointcloud import _as_cloud, remove_nan

logger = logging.getLogger(__name__)

SCAN_PERIOD = 0.1
NEIGHBORHOOD_SIZE = 5
NUM_SECTORS = 6
LESS_FLAT_LEAF_SIZE = (0.2, 0.2, 0.2)
SLOW_REGISTRATION_MS = 100.0


def remove_closed_points(points, threshold: float) -> np.ndarray:
    """Drop points whose distance from the origin is below ``threshold``, keeping the order.

    Points with non-finite coordinates fail the distance test and are kept.
    """
    cloud = _as_cloud(points)
    squared = np.einsum("ij,ij->i", cloud[:, :3], cloud[:, :3])
    with np.errstate(invalid="ignore"):
        too_close = squared < threshold * threshold
    return cloud[~too_close].copy()


def _empty() -> np.ndarray:
    return np.empty((0, 4))


@dataclass
class RegisteredScan:
    """The result of registering one sweep; rows are ``x, y, z, intensity``.

    The intensity holds the scan line plus the relative time of the point within the sweep.
    """

    cloud: np.ndarray = field(default_factory=_empty)
    corner_sharp: np.ndarray = field(default_factory=_empty)
    corner_less_sharp: np.ndarray = field(default_factory=_empty)
    surf_flat: np.ndarray = field(default_factory=_empty)
    surf_less_flat: np.ndarray = field(default_factory=_empty)
    scan_lines: tuple = ()


class LaserScanRegistration:
    """Turns raw sweeps into scan-sorted clouds and feature clouds, after a start-up delay."""

    def __init__(self, num_scans: int = 16, minimum_range: float = 0.1, system_delay: int = 0) -> None:
        if num_scans not in (16, 32, 64):
            raise ValueError("only support velodyne with 16, 32 or 64 scan line")
        self.num_scans = int(num_scans)
        self.minimum_range = float(minimum_range)
        self.system_delay = int(system_delay)
        self._init_count = 0
        self._inited = False
        self._pretreat = DataPretreat(
            ScanRegistrationConfig(
                scan_period=SCAN_PERIOD,
                num_scans=self.num_scans,
                min_range=self.minimum_range,
                neighborhood_size=NEIGHBORHOOD_SIZE,
                num_sectors=NUM_SECTORS,
                leaf_size=LESS_FLAT_LEAF_SIZE,
            )
        )

    def handle(self, points) -> Optional[RegisteredScan]:
        """Register one raw sweep, or return None while the start-up delay lasts."""
        if not self._inited:
            self._init_count += 1
            if self._init_count >= self.system_delay:
                self._inited = True
            else:
                return None

        started = time.perf_counter()
        cloud = remove_closed_points(remove_nan(points), self.minimum_range)
        sorted_cloud = self._pretreat.sort_by_scan(cloud[:, :3])
        logger.debug("points size %d", len(sorted_cloud))
        features = self._pretreat.extract_features(sorted_cloud)

        scan_ids = np.floor(sorted_cloud[:, 3]).astype(int) if len(sorted_cloud) else np.empty(0, dtype=int)
        scan_lines = tuple(sorted_cloud[scan_ids == line] for line in range(self.num_scans))

        elapsed_ms = (time.perf_counter() - started) * 1000.0
        logger.debug("scan registration time %f ms", elapsed_ms)
        if elapsed_ms > SLOW_REGISTRATION_MS:
            logger.warning("scan registration process over 100ms")

        return RegisteredScan(
            cloud=features.cloud,
            corner_sharp=features.corner_sharp,
            corner_less_sharp=features.corner_less_sharp,
            surf_flat=features.surf_flat,
            surf_less_flat=features.surf_less_flat,
            scan_lines=scan_lines,
        )