"""Conversion between geodetic coordinates and a local east-north-up frame on WGS84."""

from __future__ import annotations

import math

import numpy as np

WGS84_A = 6378137.0
WGS84_F = 1.0 / 298.257223563
_E2 = WGS84_F * (2.0 - WGS84_F)


def geodetic_to_ecef(latitude: float, longitude: float, altitude: float) -> tuple[float, float, float]:
    """Return earth-centred earth-fixed ``(X, Y, Z)`` in metres for a WGS84 position in degrees."""
    phi = math.radians(latitude)
    lam = math.radians(longitude)
    sin_phi, cos_phi = math.sin(phi), math.cos(phi)
    n = WGS84_A / math.sqrt(1.0 - _E2 * sin_phi * sin_phi)
    x = (n + altitude) * cos_phi * math.cos(lam)
    y = (n + altitude) * cos_phi * math.sin(lam)
    z = (n * (1.0 - _E2) + altitude) * sin_phi
    return x, y, z


class LocalCartesian:
    """A local east-north-up frame whose origin is a geodetic position."""

    def __init__(self, latitude: float = 0.0, longitude: float = 0.0, altitude: float = 0.0) -> None:
        self.reset(latitude, longitude, altitude)

    def reset(self, latitude: float, longitude: float, altitude: float) -> None:
        """Move the origin of the frame to the given position."""
        self.origin = (float(latitude), float(longitude), float(altitude))
        self._origin_ecef = np.array(geodetic_to_ecef(latitude, longitude, altitude))
        phi = math.radians(latitude)
        lam = math.radians(longitude)
        sp, cp = math.sin(phi), math.cos(phi)
        sl, cl = math.sin(lam), math.cos(lam)
        self._rotation = np.array(
            [
                [-sl, cl, 0.0],
                [-sp * cl, -sp * sl, cp],
                [cp * cl, cp * sl, sp],
            ]
        )

    def forward(self, latitude: float, longitude: float, altitude: float) -> tuple[float, float, float]:
        """Return ``(east, north, up)`` in metres of a geodetic position relative to the origin."""
        delta = np.array(geodetic_to_ecef(latitude, longitude, altitude)) - self._origin_ecef
        east, north, up = self._rotation @ delta
        return float(east), float(north), float(up)