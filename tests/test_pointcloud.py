import math

import numpy as np
import pytest

from lidarloc.pointcloud import filter_by_range, remove_nan, transform_points, voxel_grid_filter


def test_remove_nan_drops_non_finite_rows_and_keeps_order():
    points = np.array(
        [
            [1.0, 2.0, 3.0],
            [np.nan, 0.0, 0.0],
            [4.0, np.inf, 1.0],
            [5.0, 6.0, 7.0],
        ]
    )
    result = remove_nan(points)
    assert np.array_equal(result, points[[0, 3]])


def test_remove_nan_checks_only_coordinates():
    points = np.array([[1.0, 2.0, 3.0, np.nan]])
    result = remove_nan(points)
    assert result.shape == (1, 4)


def test_remove_nan_rejects_bad_shape():
    with pytest.raises(ValueError):
        remove_nan(np.zeros((3, 2)))


def test_filter_by_range_keeps_far_points_in_order():
    points = np.array(
        [
            [0.05, 0.0, 0.0],
            [3.0, 4.0, 0.0],
            [np.nan, 1.0, 1.0],
            [0.0, 0.0, -2.0],
            [0.0, 0.01, 0.0],
        ]
    )
    result = filter_by_range(points, 0.1)
    assert np.array_equal(result, points[[1, 3]])


def test_filter_by_range_keeps_point_exactly_at_minimum():
    points = np.array([[0.0, 0.5, 0.0]])
    result = filter_by_range(points, 0.5)
    assert len(result) == 1


def test_filter_by_range_result_distances_are_at_least_minimum():
    rng = np.random.default_rng(3)
    points = rng.normal(size=(200, 3))
    result = filter_by_range(points, 1.0)
    assert np.all(np.linalg.norm(result, axis=1) >= 1.0)
    assert len(result) == int(np.sum(np.linalg.norm(points, axis=1) >= 1.0))


def test_voxel_grid_averages_points_in_same_voxel():
    points = np.array([[0.1, 0.1, 0.1, 2.0], [0.3, 0.2, 0.4, 4.0]])
    result = voxel_grid_filter(points, 1.0)
    assert result.shape == (1, 4)
    assert np.allclose(result[0], points.mean(axis=0))


def test_voxel_grid_orders_voxels_x_fastest():
    ordered = np.array(
        [
            [0.5, 0.5, 0.5],
            [1.5, 0.5, 0.5],
            [0.5, 1.5, 0.5],
            [0.5, 0.5, 1.5],
        ]
    )
    result = voxel_grid_filter(ordered[::-1], 1.0)
    assert np.allclose(result, ordered)


def test_voxel_grid_accepts_per_axis_leaf_sizes():
    points = np.array([[0.0, 0.0, 0.0], [0.0, 0.0, 0.9]])
    assert len(voxel_grid_filter(points, (0.5, 0.5, 2.0))) == 1
    assert len(voxel_grid_filter(points, (0.5, 0.5, 0.5))) == 2


def test_voxel_grid_never_grows_the_cloud_and_keeps_mean():
    rng = np.random.default_rng(7)
    points = rng.uniform(-5.0, 5.0, size=(500, 3))
    result = voxel_grid_filter(points, 10.0 + 1e-9)
    assert len(result) <= 8
    counts = len(voxel_grid_filter(points, 0.2))
    assert counts <= len(points)


def test_voxel_grid_empty_input():
    result = voxel_grid_filter(np.empty((0, 4)), 0.2)
    assert result.shape == (0, 4)


@pytest.mark.parametrize("leaf", [0.0, -1.0, (0.2, 0.0, 0.2)])
def test_voxel_grid_rejects_non_positive_leaf(leaf):
    with pytest.raises(ValueError):
        voxel_grid_filter(np.zeros((2, 3)), leaf)


def test_transform_points_identity():
    points = np.array([[1.0, 2.0, 3.0, 9.0]])
    assert np.array_equal(transform_points(points, np.eye(4)), points)


def test_transform_points_translation_and_extra_columns():
    transform = np.eye(4)
    transform[:3, 3] = (1.0, -2.0, 0.5)
    points = np.array([[0.0, 0.0, 0.0, 7.0], [1.0, 1.0, 1.0, 8.0]])
    result = transform_points(points, transform)
    assert np.allclose(result[:, :3], points[:, :3] + (1.0, -2.0, 0.5))
    assert np.array_equal(result[:, 3], points[:, 3])


def test_transform_points_rotation_preserves_norms_and_round_trips():
    angle = 0.7
    transform = np.eye(4)
    transform[:2, :2] = [[math.cos(angle), -math.sin(angle)], [math.sin(angle), math.cos(angle)]]
    transform[:3, 3] = (3.0, 1.0, -1.0)
    rng = np.random.default_rng(11)
    points = rng.normal(size=(20, 3))
    moved = transform_points(points, transform)
    back = transform_points(moved, np.linalg.inv(transform))
    assert np.allclose(back, points)
    rotated_only = transform_points(points, np.block([[transform[:3, :3], np.zeros((3, 1))], [np.zeros((1, 3)), 1.0]]))
    assert np.allclose(np.linalg.norm(rotated_only, axis=1), np.linalg.norm(points, axis=1))


def test_transform_points_does_not_modify_input():
    points = np.array([[1.0, 1.0, 1.0]])
    transform = np.eye(4)
    transform[0, 3] = 5.0
    transform_points(points, transform)
    assert np.array_equal(points, [[1.0, 1.0, 1.0]])


def test_transform_points_rejects_bad_matrix():
    with pytest.raises(ValueError):
        transform_points(np.zeros((1, 3)), np.eye(3))