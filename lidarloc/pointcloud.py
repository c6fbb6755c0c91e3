"""Point cloud filters and transforms on ``(N, k)`` arrays whose first three columns are x, y, z."""

from __future__ import annotations

from typing import Sequence, Union

import numpy as np


def _as_cloud(points) -> np.ndarray:
    cloud = np.asarray(points, dtype=float)
    if cloud.size == 0 and cloud.ndim < 2:
        return np.empty((0, 3))
    if cloud.ndim != 2 or cloud.shape[1] < 3:
        raise ValueError("points must be an (N, k) array with k >= 3")
    return cloud


def remove_nan(points) -> np.ndarray:
    """Return the points whose x, y and z are all finite, in their original order."""
    cloud = _as_cloud(points)
    finite = np.all(np.isfinite(cloud[:, :3]), axis=1)
    return cloud[finite].copy()


def filter_by_range(points, min_range: float) -> np.ndarray:
    """Drop non-finite points and points closer to the origin than ``min_range``."""
    cloud = remove_nan(points)
    distances = np.linalg.norm(cloud[:, :3], axis=1)
    return cloud[distances >= min_range]


def voxel_grid_filter(points, leaf_size: Union[float, Sequence[float]]) -> np.ndarray:
    """Replace the points in each voxel by their centroid, averaging every column.

    Voxels are emitted in order of their index, with x varying fastest, then y, then z.
    """
    leaf = np.broadcast_to(np.asarray(leaf_size, dtype=float), (3,)).copy()
    if np.any(~np.isfinite(leaf)) or np.any(leaf <= 0.0):
        raise ValueError("leaf sizes must be positive")
    cloud = remove_nan(points)
    if len(cloud) == 0:
        return cloud

    cells = np.floor(cloud[:, :3] * (1.0 / leaf)).astype(np.int64)
    cells -= cells.min(axis=0)
    dims = cells.max(axis=0) + 1
    keys = cells[:, 0] + cells[:, 1] * dims[0] + cells[:, 2] * dims[0] * dims[1]
    unique_keys, inverse = np.unique(keys, return_inverse=True)
    inverse = inverse.ravel()

    sums = np.zeros((len(unique_keys), cloud.shape[1]))
    np.add.at(sums, inverse, cloud)
    counts = np.bincount(inverse, minlength=len(unique_keys))
    return sums / counts[:, None]


def transform_points(points, transform) -> np.ndarray:
    """Apply a 4x4 rigid transform to the coordinates; other columns are kept as they are."""
    matrix = np.asarray(transform, dtype=float)
    if matrix.shape != (4, 4):
        raise ValueError("transform must be a 4x4 matrix")
    cloud = _as_cloud(points).copy()
    cloud[:, :3] = cloud[:, :3] @ matrix[:3, :3].T + matrix[:3, 3]
    return cloud