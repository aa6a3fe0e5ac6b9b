"""
Spatial query planner.

Turns query value objects into store queries and refines the store's candidates:

Radius search (two phases):
1. Bounding box from the distance engine (a superset of the circle).
2. Store query: coordinates present, lat/lon inside the box, owner filters.
3. Exact distance per candidate with the requested algorithm; anything beyond
   the radius is dropped. This refinement always runs.
4. Sort by (distance, record id), then apply offset/limit.

Nearest search has no radius to build a box from. When the store can compute
distances it is asked for the first k rows by distance; otherwise every
coordinate-bearing candidate is scored and sorted, O(n log n) over that subset.
Either way the planner recomputes and re-sorts the exact distances itself.

The planner is stateless; store errors propagate unchanged.
"""

from __future__ import annotations

import logging

from addressable.core.geo import bounding_box, calculate_distance
from addressable.domain.models import (
    AddressRecord,
    NearestQuery,
    RadiusQuery,
    SearchHit,
    SearchResult,
)
from addressable.store.base import AddressStore, DistanceProjection, StoreQuery

logger = logging.getLogger(__name__)


def _sort_key(hit: SearchHit) -> tuple[float, str]:
    return (hit.distance, hit.record.id)


class SpatialQueryPlanner:
    def plan_radius(self, query: RadiusQuery) -> StoreQuery:
        box = bounding_box(query.center, query.radius, query.unit)
        return StoreQuery(
            require_coordinates=True,
            bbox=box,
            owner_type=query.filters.owner_type,
            owner_id=query.filters.owner_id,
        )

    def plan_nearest(self, query: NearestQuery, store: AddressStore) -> StoreQuery:
        projection = None
        limit = None
        if getattr(store, "supports_distance_projection", False):
            projection = DistanceProjection(
                lat=query.center.lat,
                lon=query.center.lon,
                unit=query.unit,
                algorithm=query.algorithm,
            )
            limit = query.limit
        return StoreQuery(
            require_coordinates=True,
            owner_type=query.filters.owner_type,
            owner_id=query.filters.owner_id,
            projection=projection,
            limit=limit,
        )

    def _score(self, records: list[AddressRecord], lat: float, lon: float, query) -> list[SearchHit]:
        hits: list[SearchHit] = []
        for r in records:
            if not r.has_coordinates():
                continue
            d = calculate_distance(lat, lon, r.latitude, r.longitude, query.unit, query.algorithm)
            hits.append(SearchHit(record=r, distance=d))
        return hits

    def find_within_radius(self, store: AddressStore, query: RadiusQuery) -> SearchResult:
        store_query = self.plan_radius(query)
        candidates = store.fetch(store_query)
        hits = [
            h
            for h in self._score(candidates, query.center.lat, query.center.lon, query)
            if h.distance <= query.radius
        ]
        hits.sort(key=_sort_key)
        logger.debug(
            "Radius query r=%s %s: %d candidates in bbox, %d within radius",
            query.radius,
            query.unit.value,
            len(candidates),
            len(hits),
        )
        page = hits[query.offset : query.offset + query.limit]
        return SearchResult(unit=query.unit, hits=page)

    def find_nearest(self, store: AddressStore, query: NearestQuery) -> SearchResult:
        store_query = self.plan_nearest(query, store)
        candidates = store.fetch(store_query)
        hits = self._score(candidates, query.center.lat, query.center.lon, query)
        hits.sort(key=_sort_key)
        return SearchResult(unit=query.unit, hits=hits[: query.limit])
