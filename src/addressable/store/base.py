"""
Address store contract.

The search core never owns address records; it talks to a store through the
narrow capability set below. Stores raise `StoreUnavailableError` when the
backing storage fails and `MaintenanceError` when index/statistics maintenance
fails.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from addressable.core.geo import BoundingBox, DistanceAlgorithm, DistanceUnit
from addressable.domain.models import AddressRecord


@dataclass(frozen=True)
class DistanceProjection:
    """Ask the store to compute distance from `lat/lon` and order by it (pushdown)."""

    lat: float
    lon: float
    unit: DistanceUnit
    algorithm: DistanceAlgorithm


@dataclass(frozen=True)
class StoreQuery:
    """Field predicates understood by every store.

    `require_coordinates` selects records whose latitude and longitude are both
    non-null. `bbox` adds inclusive range predicates on both fields. Without a
    projection, records come back in insertion order.
    """

    require_coordinates: bool = True
    bbox: BoundingBox | None = None
    owner_type: str | None = None
    owner_id: str | None = None
    projection: DistanceProjection | None = None
    limit: int | None = None
    offset: int = 0


@runtime_checkable
class AddressStore(Protocol):
    supports_distance_projection: bool

    def fetch(self, query: StoreQuery) -> list[AddressRecord]: ...

    def count(self, query: StoreQuery) -> int: ...

    def has_spatial_index(self) -> bool: ...

    def ensure_spatial_index(self) -> bool:
        """Create the spatial index if missing; True when this call created it."""
        ...

    def refresh_statistics(self) -> None: ...

    def query_uses_index(self) -> bool | None:
        """Heuristic check that a typical bbox query would use the index (None if unknown)."""
        ...
