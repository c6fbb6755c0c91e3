"""Rotation and rigid-transform helpers shared by the localization pipeline."""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np


def quaternion_to_matrix(x: float, y: float, z: float, w: float) -> np.ndarray:
    """Return the 3x3 rotation matrix of a quaternion, assumed to be of unit length."""
    tx, ty, tz = 2.0 * x, 2.0 * y, 2.0 * z
    twx, twy, twz = tx * w, ty * w, tz * w
    txx, txy, txz = tx * x, ty * x, tz * x
    tyy, tyz, tzz = ty * y, tz * y, tz * z
    return np.array(
        [
            [1.0 - (tyy + tzz), txy - twz, txz + twy],
            [txy + twz, 1.0 - (txx + tzz), tyz - twx],
            [txz - twy, tyz + twx, 1.0 - (txx + tyy)],
        ],
        dtype=float,
    )


def matrix_to_quaternion(rotation) -> tuple[float, float, float, float]:
    """Return the quaternion ``(x, y, z, w)`` of a 3x3 rotation matrix."""
    m = np.asarray(rotation, dtype=float)
    if m.shape[0] < 3 or m.shape[1] < 3:
        raise ValueError("rotation must be at least 3x3")
    m = m[:3, :3]
    trace = m[0, 0] + m[1, 1] + m[2, 2]
    if trace > 0.0:
        t = math.sqrt(trace + 1.0)
        w = 0.5 * t
        t = 0.5 / t
        return (
            (m[2, 1] - m[1, 2]) * t,
            (m[0, 2] - m[2, 0]) * t,
            (m[1, 0] - m[0, 1]) * t,
            w,
        )

    i = 0
    if m[1, 1] > m[0, 0]:
        i = 1
    if m[2, 2] > m[i, i]:
        i = 2
    j = (i + 1) % 3
    k = (j + 1) % 3
    t = math.sqrt(m[i, i] - m[j, j] - m[k, k] + 1.0)
    q = [0.0, 0.0, 0.0]
    q[i] = 0.5 * t
    t = 0.5 / t
    w = (m[k, j] - m[j, k]) * t
    q[j] = (m[j, i] + m[i, j]) * t
    q[k] = (m[k, i] + m[i, k]) * t
    return (q[0], q[1], q[2], w)


def euler_ypr_from_quaternion(x: float, y: float, z: float, w: float) -> tuple[float, float, float]:
    """Return ``(yaw, pitch, roll)`` of a quaternion, for the Z-Y-X convention."""
    norm_sq = x * x + y * y + z * z + w * w
    if norm_sq == 0.0:
        raise ValueError("quaternion has zero length")
    scale = 1.0 / math.sqrt(norm_sq)
    m = quaternion_to_matrix(x * scale, y * scale, z * scale, w * scale)

    if abs(m[2, 0]) >= 1.0:
        delta = math.atan2(m[2, 1], m[2, 2])
        pitch = math.pi / 2.0 if m[2, 0] < 0.0 else -math.pi / 2.0
        return 0.0, pitch, delta

    pitch = -math.asin(m[2, 0])
    cos_pitch = math.cos(pitch)
    roll = math.atan2(m[2, 1] / cos_pitch, m[2, 2] / cos_pitch)
    yaw = math.atan2(m[1, 0] / cos_pitch, m[0, 0] / cos_pitch)
    return yaw, pitch, roll


def _rotation_from_ypr(yaw: float, pitch: float, roll: float) -> np.ndarray:
    cy, sy = math.cos(yaw), math.sin(yaw)
    cp, sp = math.cos(pitch), math.sin(pitch)
    cr, sr = math.cos(roll), math.sin(roll)
    rz = np.array([[cy, -sy, 0.0], [sy, cy, 0.0], [0.0, 0.0, 1.0]])
    ry = np.array([[cp, 0.0, sp], [0.0, 1.0, 0.0], [-sp, 0.0, cp]])
    rx = np.array([[1.0, 0.0, 0.0], [0.0, cr, -sr], [0.0, sr, cr]])
    return rz @ ry @ rx


def transform_from_translation_quaternion(
    translation: Sequence[float], quaternion: Sequence[float]
) -> np.ndarray:
    """Build a 4x4 homogeneous transform from a translation and a quaternion ``(x, y, z, w)``."""
    tx, ty, tz = (float(v) for v in translation)
    yaw, pitch, roll = euler_ypr_from_quaternion(*(float(v) for v in quaternion))
    transform = np.eye(4)
    transform[:3, :3] = _rotation_from_ypr(yaw, pitch, roll)
    transform[:3, 3] = (tx, ty, tz)
    return transform