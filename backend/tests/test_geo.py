"""Distance and coordinate plausibility tests."""

import math

import pytest

from famguard.services.geo_service import haversine_km, is_plausible_coordinate


def test_haversine_same_point_is_zero():
    assert haversine_km(6.5244, 3.3792, 6.5244, 3.3792) == pytest.approx(0.0)


def test_haversine_one_degree_of_latitude():
    """One degree of latitude is ~111.2km everywhere."""
    assert haversine_km(0.0, 10.0, 1.0, 10.0) == pytest.approx(111.19, abs=0.05)


def test_haversine_is_symmetric():
    a = haversine_km(6.45, 3.39, 9.07, 7.49)
    b = haversine_km(9.07, 7.49, 6.45, 3.39)
    assert a == pytest.approx(b)


@pytest.mark.parametrize(
    "lat, lon",
    [
        (0.00001, 0.00001),
        (0.0, 0.0),
        (91.0, 10.0),
        (-90.5, 10.0),
        (10.0, 180.1),
        (math.nan, 3.0),
        (6.0, math.inf),
        (None, 3.0),
    ],
)
def test_implausible_coordinates_rejected(lat, lon):
    assert is_plausible_coordinate(lat, lon) is False


@pytest.mark.parametrize(
    "lat, lon",
    [
        (6.5244, 3.3792),
        (90.0, 180.0),
        (-90.0, -180.0),
        # On the equator but far from (0, 0)
        (0.0, 3.5),
    ],
)
def test_plausible_coordinates_accepted(lat, lon):
    assert is_plausible_coordinate(lat, lon) is True
