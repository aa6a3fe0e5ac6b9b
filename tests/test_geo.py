import math

import pytest

from addressable.core.errors import InvalidInputError
from addressable.core.geo import (
    DistanceUnit,
    GeoPoint,
    bounding_box,
    calculate_distance,
    decimal_to_dms,
    dms_to_decimal,
    haversine,
    midpoint,
    point_in_polygon,
    spherical_law,
    vincenty,
)

NEW_YORK = (40.7128, -74.0060)
LONDON = (51.5074, -0.1278)


def test_one_degree_of_longitude_at_equator():
    assert calculate_distance(0, 0, 0, 1, "kilometers") == pytest.approx(111.19, abs=0.01)


def test_same_point_zero_distance():
    assert haversine(*NEW_YORK, *NEW_YORK, "kilometers") == 0.0
    assert vincenty(*NEW_YORK, *NEW_YORK, "kilometers") == 0.0
    # acos near 1 is imprecise; only "about zero" is guaranteed.
    assert spherical_law(*NEW_YORK, *NEW_YORK, "kilometers") == pytest.approx(0.0, abs=1e-3)


@pytest.mark.parametrize("unit", list(DistanceUnit))
def test_haversine_symmetry(unit):
    d1 = haversine(*NEW_YORK, *LONDON, unit)
    d2 = haversine(*LONDON, *NEW_YORK, unit)
    assert d1 == pytest.approx(d2, rel=1e-12)


@pytest.mark.parametrize("unit", list(DistanceUnit))
def test_unit_conversion_goes_through_radius_constants(unit):
    meters = haversine(*NEW_YORK, *LONDON, "meters")
    assert meters / unit.meters_per_unit == pytest.approx(haversine(*NEW_YORK, *LONDON, unit), rel=1e-9)


def test_meters_per_unit_values():
    assert DistanceUnit.KILOMETERS.meters_per_unit == pytest.approx(1000.0)
    assert DistanceUnit.MILES.meters_per_unit == pytest.approx(1609.24, abs=0.01)
    assert DistanceUnit.FEET.meters_per_unit == pytest.approx(0.3048, abs=1e-4)


def test_antipodal_roughly_half_circumference():
    d = haversine(0.0, 0.0, 0.0, 180.0, "kilometers")
    assert d == pytest.approx(math.pi * 6371.0, abs=1.0)


def test_vincenty_equator_degree_uses_ellipsoid():
    # One degree along the equator on WGS84 is a * pi / 180.
    assert vincenty(0, 0, 0, 1, "kilometers") == pytest.approx(111.3195, abs=0.001)


def test_vincenty_close_to_haversine_for_long_distances():
    v = vincenty(*NEW_YORK, *LONDON, "kilometers")
    h = haversine(*NEW_YORK, *LONDON, "kilometers")
    assert abs(v - h) / h < 0.01


def test_vincenty_units_are_consistent():
    meters = vincenty(*NEW_YORK, *LONDON, "meters")
    assert vincenty(*NEW_YORK, *LONDON, "miles") == pytest.approx(meters / DistanceUnit.MILES.meters_per_unit)


def test_vincenty_returns_zero_when_iteration_does_not_converge(monkeypatch):
    monkeypatch.setattr("addressable.core.geo.VINCENTY_MAX_ITERATIONS", 1)
    assert vincenty(*NEW_YORK, *LONDON, "kilometers") == 0.0


def test_spherical_law_matches_haversine_for_moderate_distances():
    s = spherical_law(*NEW_YORK, *LONDON, "kilometers")
    h = haversine(*NEW_YORK, *LONDON, "kilometers")
    assert s == pytest.approx(h, rel=1e-6)


def test_unknown_unit_and_algorithm_are_rejected():
    with pytest.raises(InvalidInputError):
        calculate_distance(0, 0, 1, 1, "parsecs")
    with pytest.raises(InvalidInputError):
        calculate_distance(0, 0, 1, 1, "kilometers", "manhattan")


def test_bounding_box_contains_points_inside_radius():
    center = GeoPoint(lat=40.0, lon=-88.0)
    box = bounding_box(center, 10, "kilometers")
    assert box.min_lat < 40.0 < box.max_lat
    assert box.max_lat - 40.0 == pytest.approx(10 / 6371 * 180 / math.pi)
    # Longitude delta is wider than latitude delta away from the equator.
    assert (box.max_lon - (-88.0)) > (box.max_lat - 40.0)
    # ~9.9 km due east is inside.
    east = -88.0 + 9.9 / (111.195 * math.cos(math.radians(40.0)))
    assert box.contains(40.0, east)


def test_bounding_box_near_pole_is_clamped():
    box = bounding_box(GeoPoint(lat=89.99, lon=0.0), 100, "kilometers")
    assert box.max_lat == 90.0
    assert box.min_lon == -180.0 and box.max_lon == 180.0


def test_bounding_box_rejects_non_positive_radius():
    with pytest.raises(InvalidInputError):
        bounding_box(GeoPoint(lat=0, lon=0), 0)


def test_midpoint_on_equator():
    mid = midpoint(0, 0, 0, 90)
    assert mid.lat == pytest.approx(0.0, abs=1e-9)
    assert mid.lon == pytest.approx(45.0)


def test_midpoint_is_equidistant():
    mid = midpoint(*NEW_YORK, *LONDON)
    d1 = haversine(*NEW_YORK, mid.lat, mid.lon)
    d2 = haversine(mid.lat, mid.lon, *LONDON)
    assert d1 == pytest.approx(d2, rel=1e-9)


def test_point_in_rotated_square():
    # Diamond (square rotated 45 degrees), vertices as (lon, lat).
    diamond = [(0.0, 1.0), (1.0, 0.0), (0.0, -1.0), (-1.0, 0.0)]
    assert point_in_polygon(GeoPoint(lat=0.0, lon=0.0), diamond)
    assert point_in_polygon(GeoPoint(lat=0.2, lon=-0.3), diamond)
    # Inside the bounding square but outside the diamond.
    assert not point_in_polygon(GeoPoint(lat=0.9, lon=0.9), diamond)
    assert not point_in_polygon(GeoPoint(lat=5.0, lon=5.0), diamond)


def test_point_in_polygon_requires_three_vertices():
    with pytest.raises(InvalidInputError):
        point_in_polygon(GeoPoint(lat=0, lon=0), [(0, 0), (1, 1)])


def test_decimal_to_dms_round_trip():
    dms = decimal_to_dms(40.7128)
    assert (dms.degrees, dms.minutes) == (40, 42)
    assert dms.seconds == pytest.approx(46.08)
    assert str(dms) == "40°42'46.08\""
    assert dms_to_decimal(dms.degrees, dms.minutes, dms.seconds) == pytest.approx(40.7128, abs=1e-12)


def test_negative_dms_round_trip():
    dms = decimal_to_dms(-74.006)
    assert dms.negative
    assert dms.degrees == 74
    assert dms_to_decimal(dms.degrees, dms.minutes, dms.seconds, dms.negative) == pytest.approx(-74.006, abs=1e-12)


def test_bounding_box_reaching_a_pole_spans_all_longitudes():
    # 200 km from (89, 0) reaches past the pole; points across it sit near lon 180.
    box = bounding_box(GeoPoint(lat=89.0, lon=0.0), 200, "kilometers")
    assert box.max_lat == 90.0
    assert (box.min_lon, box.max_lon) == (-180.0, 180.0)
    assert box.contains(89.5, 180.0)

    south = bounding_box(GeoPoint(lat=-89.5, lon=45.0), 100, "kilometers")
    assert south.min_lat == -90.0
    assert south.contains(-89.6, -135.0)


def test_bounding_box_wraps_across_antimeridian():
    box = bounding_box(GeoPoint(lat=0.0, lon=179.99), 10, "kilometers")
    assert box.crosses_antimeridian
    assert box.min_lon > box.max_lon
    assert box.contains(0.0, -179.99)
    assert box.contains(0.0, 179.95)
    assert not box.contains(0.0, 0.0)
    assert len(box.lon_ranges()) == 2

    west = bounding_box(GeoPoint(lat=10.0, lon=-179.99), 10, "kilometers")
    assert west.crosses_antimeridian
    assert west.contains(10.0, 179.99)


def test_bounding_box_away_from_the_seam_does_not_wrap():
    box = bounding_box(GeoPoint(lat=0.0, lon=0.0), 10, "kilometers")
    assert not box.crosses_antimeridian
    assert box.lon_ranges() == [(box.min_lon, box.max_lon)]


def test_midpoint_returns_a_validated_geo_point():
    mid = midpoint(40, -74, 41, -73)
    assert isinstance(mid, GeoPoint)
    assert 40 < mid.lat < 41 and -74 < mid.lon < -73


def test_geo_point_rejects_out_of_range_values():
    with pytest.raises(ValueError):
        GeoPoint(lat=91, lon=0)
    with pytest.raises(ValueError):
        GeoPoint(lat=0, lon=-181)
