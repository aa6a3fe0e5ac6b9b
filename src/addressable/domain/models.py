"""
Domain models (Pydantic).

These types represent the stable "contract" between layers:
- stored address records (`AddressRecord`; points are `core.geo.GeoPoint`)
- query value objects (`RadiusQuery`, `NearestQuery`)
- ordered search output (`SearchResult`) and per-point batch output (`BatchItemResult`)
- diagnostics (`SpatialStats`, `OptimizeReport`)

Query objects validate on construction, so bad input is rejected before any store
or cache access. `cache_payload()` is the canonical, deterministic form used for
cache keys.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from addressable.core.cache import round_coordinate
from addressable.core.geo import DistanceAlgorithm, DistanceUnit, GeoPoint, calculate_distance


class AddressRecord(BaseModel):
    """One stored address. Latitude and longitude are both set or both absent."""

    id: str
    owner_type: str | None = None
    owner_id: str | None = None
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)

    label: str | None = None
    street: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country_code: str | None = None

    @model_validator(mode="after")
    def _validate_coordinate_pair(self) -> "AddressRecord":
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must both be set or both be empty")
        return self

    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def is_complete(self) -> bool:
        return bool(self.street and self.city and self.country_code)

    def point(self) -> GeoPoint | None:
        if not self.has_coordinates():
            return None
        return GeoPoint(lat=self.latitude, lon=self.longitude)

    def distance_to(
        self,
        other: "AddressRecord",
        unit: DistanceUnit | str = DistanceUnit.KILOMETERS,
        algorithm: DistanceAlgorithm | str = DistanceAlgorithm.HAVERSINE,
    ) -> float | None:
        """Distance to `other`, or None when either record lacks coordinates."""
        if not self.has_coordinates() or not other.has_coordinates():
            return None
        return calculate_distance(
            self.latitude, self.longitude, other.latitude, other.longitude, unit, algorithm
        )

    def is_within_radius(
        self, other: "AddressRecord", radius: float, unit: DistanceUnit | str = DistanceUnit.KILOMETERS
    ) -> bool:
        distance = self.distance_to(other, unit)
        return distance is not None and distance <= radius


class SearchFilters(BaseModel):
    """Optional owner filters (polymorphic parent discriminator + id)."""

    model_config = ConfigDict(frozen=True)

    owner_type: str | None = None
    owner_id: str | None = None

    def cache_payload(self) -> dict[str, Any]:
        return {"owner_type": self.owner_type, "owner_id": self.owner_id}


class RadiusQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    center: GeoPoint
    radius: float = Field(..., gt=0)
    unit: DistanceUnit = DistanceUnit.KILOMETERS
    algorithm: DistanceAlgorithm = DistanceAlgorithm.HAVERSINE
    filters: SearchFilters = Field(default_factory=SearchFilters)
    limit: int = Field(100, ge=1)
    offset: int = Field(0, ge=0)

    def cache_payload(self, precision: int = 4) -> dict[str, Any]:
        return {
            "kind": "radius",
            "lat": round_coordinate(self.center.lat, precision),
            "lon": round_coordinate(self.center.lon, precision),
            "radius": float(self.radius),
            "unit": self.unit.value,
            "algorithm": self.algorithm.value,
            "filters": self.filters.cache_payload(),
            "limit": self.limit,
            "offset": self.offset,
        }


class NearestQuery(BaseModel):
    model_config = ConfigDict(frozen=True)

    center: GeoPoint
    limit: int = Field(10, ge=1)
    unit: DistanceUnit = DistanceUnit.KILOMETERS
    algorithm: DistanceAlgorithm = DistanceAlgorithm.HAVERSINE
    filters: SearchFilters = Field(default_factory=SearchFilters)

    def cache_payload(self, precision: int = 4) -> dict[str, Any]:
        return {
            "kind": "nearest",
            "lat": round_coordinate(self.center.lat, precision),
            "lon": round_coordinate(self.center.lon, precision),
            "nearest": self.limit,
            "unit": self.unit.value,
            "algorithm": self.algorithm.value,
            "filters": self.filters.cache_payload(),
        }


class SearchHit(BaseModel):
    record: AddressRecord
    distance: float = Field(..., ge=0)


class SearchResult(BaseModel):
    """Hits ordered by ascending distance (ties by record id)."""

    unit: DistanceUnit
    hits: list[SearchHit] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.hits)

    @property
    def records(self) -> list[AddressRecord]:
        return [h.record for h in self.hits]

    @property
    def distances(self) -> list[float]:
        return [h.distance for h in self.hits]


class BatchItemResult(BaseModel):
    """Outcome for one point of a batch search; failures stay visible per slot."""

    index: int
    point: dict[str, Any]
    status: Literal["ok", "error", "cancelled"]
    result: SearchResult | None = None
    error: str | None = None
    error_type: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


class SpatialStats(BaseModel):
    total_records: int
    records_with_coordinates: int
    coordinate_coverage_percent: float
    spatial_index_present: bool
    cache_config: dict[str, Any] = Field(default_factory=dict)


class OptimizeReport(BaseModel):
    index_created: bool | None = None
    stats_updated: bool = False
    query_uses_index: bool | None = None
    errors: dict[str, str] = Field(default_factory=dict)
