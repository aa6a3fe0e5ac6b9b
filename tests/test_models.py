import pytest
from pydantic import ValidationError

from addressable.core.geo import GeoPoint, haversine
from addressable.domain.models import AddressRecord

HOME = AddressRecord(id="home", latitude=40.7128, longitude=-74.0060)
NEAR = AddressRecord(id="near", latitude=40.73, longitude=-73.935)
NOWHERE = AddressRecord(id="nowhere")


def test_has_coordinates():
    assert HOME.has_coordinates()
    assert not NOWHERE.has_coordinates()


def test_point_is_a_geo_point_or_none():
    assert HOME.point() == GeoPoint(lat=40.7128, lon=-74.0060)
    assert NOWHERE.point() is None


def test_distance_to_uses_the_distance_engine():
    assert HOME.distance_to(NEAR) == pytest.approx(haversine(40.7128, -74.0060, 40.73, -73.935))
    assert HOME.distance_to(NEAR, "miles") == pytest.approx(HOME.distance_to(NEAR) * 1000 / 1609.24, rel=1e-4)
    assert HOME.distance_to(NEAR, algorithm="vincenty") > 0


def test_distance_to_is_none_without_coordinates():
    assert HOME.distance_to(NOWHERE) is None
    assert NOWHERE.distance_to(HOME) is None


def test_is_within_radius():
    # About 6.3 km apart.
    assert HOME.is_within_radius(NEAR, 10)
    assert not HOME.is_within_radius(NEAR, 5)
    assert HOME.is_within_radius(NEAR, 5, "miles")
    assert not HOME.is_within_radius(NOWHERE, 10_000)


def test_is_complete_needs_street_city_and_country():
    full = AddressRecord(id="x", street="1 Main St", city="Springfield", country_code="US")
    assert full.is_complete()
    assert not full.model_copy(update={"city": None}).is_complete()
    assert not AddressRecord(id="y", street="1 Main St", city="Springfield").is_complete()


@pytest.mark.parametrize("coords", [{"latitude": 10.0}, {"longitude": 10.0}])
def test_coordinates_must_come_in_pairs(coords):
    with pytest.raises(ValidationError, match="both be set"):
        AddressRecord(id="half", **coords)


def test_coordinates_are_range_checked():
    with pytest.raises(ValidationError):
        AddressRecord(id="bad", latitude=95.0, longitude=0.0)
