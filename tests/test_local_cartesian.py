import math

import pytest

from lidarloc.local_cartesian import LocalCartesian, geodetic_to_ecef


def test_equator_prime_meridian_is_semi_major_axis():
    assert geodetic_to_ecef(0.0, 0.0, 0.0) == pytest.approx((6378137.0, 0.0, 0.0))


def test_north_pole_is_semi_minor_axis():
    x, y, z = geodetic_to_ecef(90.0, 0.0, 0.0)
    assert z == pytest.approx(6356752.314245, abs=1e-3)
    assert abs(x) < 1e-6 and abs(y) < 1e-6


def test_altitude_adds_along_normal():
    base = geodetic_to_ecef(0.0, 90.0, 0.0)
    raised = geodetic_to_ecef(0.0, 90.0, 250.0)
    assert raised[1] - base[1] == pytest.approx(250.0)


def test_origin_maps_to_zero():
    conv = LocalCartesian(49.0, 8.4, 115.0)
    assert conv.forward(49.0, 8.4, 115.0) == pytest.approx((0.0, 0.0, 0.0), abs=1e-6)


def test_default_origin():
    conv = LocalCartesian()
    assert conv.origin == (0.0, 0.0, 0.0)
    assert conv.forward(0.0, 0.0, 0.0) == pytest.approx((0.0, 0.0, 0.0), abs=1e-6)


def test_height_goes_to_up():
    conv = LocalCartesian(49.0, 8.4, 115.0)
    east, north, up = conv.forward(49.0, 8.4, 215.0)
    assert up == pytest.approx(100.0, abs=1e-6)
    assert abs(east) < 1e-6 and abs(north) < 1e-6


def test_directions():
    conv = LocalCartesian(49.0, 8.4, 0.0)
    east, north, _ = conv.forward(49.0, 8.401, 0.0)
    assert east > 0 and abs(north) < abs(east) * 1e-3
    east, north, _ = conv.forward(49.001, 8.4, 0.0)
    assert north > 0 and abs(east) < 1e-6


def test_distance_preserved():
    conv = LocalCartesian(49.0, 8.4, 115.0)
    point = (49.002, 8.397, 130.0)
    enu = conv.forward(*point)
    a = geodetic_to_ecef(49.0, 8.4, 115.0)
    b = geodetic_to_ecef(*point)
    assert math.dist(enu, (0.0, 0.0, 0.0)) == pytest.approx(math.dist(a, b))


def test_reset_moves_origin():
    conv = LocalCartesian(0.0, 0.0, 0.0)
    conv.reset(49.0, 8.4, 115.0)
    assert conv.origin == (49.0, 8.4, 115.0)
    assert conv.forward(49.0, 8.4, 115.0) == pytest.approx((0.0, 0.0, 0.0), abs=1e-6)