from __future__ import annotations

# This module is the "orchestrator" for geospatial search.
# It wires together:
# - input validation (query value objects)
# - the result cache (cache-first reads, best-effort writes)
# - the spatial query planner (bbox pre-filter + exact distance refinement)
# - store maintenance and diagnostics
#
# The service holds no per-call state: everything that outlives a call lives in
# the cache backend or in the address store.

import logging
import sys
import threading
import time
from typing import Any, Callable, Mapping, Sequence, Union

import psutil
from pydantic import ValidationError

from addressable.config.overrides import apply_settings_overrides
from addressable.config.settings import Settings, get_settings
from addressable.core.cache import FileCache, MemoryCache, ResultCache, current_cache_stats, make_search_key
from addressable.core.env import resolve_project_path
from addressable.core.errors import InvalidInputError
from addressable.core.geo import (
    DistanceAlgorithm,
    DistanceUnit,
    parse_algorithm,
    parse_unit,
    validate_coordinate,
)
from addressable.domain.models import (
    BatchItemResult,
    GeoPoint,
    NearestQuery,
    OptimizeReport,
    RadiusQuery,
    SearchFilters,
    SearchResult,
    SpatialStats,
)
from addressable.search.distances import DistanceMemo
from addressable.search.planner import SpatialQueryPlanner
from addressable.store.base import AddressStore, StoreQuery

logger = logging.getLogger(__name__)

PointLike = Union[GeoPoint, tuple[float, float], Mapping[str, float]]
CancelSignal = Union[threading.Event, Callable[[], bool]]


def build_cache(settings: Settings) -> ResultCache:
    """Build the result cache described by `settings.cache`."""
    if settings.cache.backend == "file":
        backend = FileCache(resolve_project_path(settings.cache.dir, create_dir=True))
    else:
        backend = MemoryCache()
    return ResultCache(
        backend,
        prefix=settings.cache.prefix,
        enabled=settings.cache.enabled,
        search_ttl_seconds=settings.cache.search_ttl_seconds,
        distance_ttl_seconds=settings.cache.distance_ttl_seconds,
    )


def _coerce_point(point: PointLike) -> GeoPoint:
    """Accept a GeoPoint, a (lat, lon) pair, or a mapping with latitude/longitude (or lat/lon)."""
    if isinstance(point, GeoPoint):
        return point
    if isinstance(point, Mapping):
        lat = point.get("latitude", point.get("lat"))
        lon = point.get("longitude", point.get("lon"))
    else:
        try:
            lat, lon = point
        except (TypeError, ValueError):
            raise InvalidInputError(f"Cannot read a coordinate from {point!r}") from None
    try:
        lat_f, lon_f = float(lat), float(lon)
    except (TypeError, ValueError):
        raise InvalidInputError(f"Cannot read a coordinate from {point!r}") from None
    validate_coordinate(lat_f, lon_f)
    return GeoPoint(lat=lat_f, lon=lon_f)


def _is_cancelled(cancel: CancelSignal | None) -> bool:
    if cancel is None:
        return False
    if isinstance(cancel, threading.Event):
        return cancel.is_set()
    return bool(cancel())


def _peak_rss_bytes(mem: Any) -> int | None:
    """Peak resident set size of this process, when the platform reports it."""
    # Windows exposes the peak working set through psutil.
    peak = getattr(mem, "peak_wset", None)
    if peak is not None:
        return int(peak)
    if sys.platform.startswith("linux") or sys.platform == "darwin":
        import resource

        maxrss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
        # Linux reports kilobytes, macOS bytes.
        return int(maxrss) if sys.platform == "darwin" else int(maxrss) * 1024
    return None


class RadiusSearchService:
    """Within-radius and k-nearest address search with result caching."""

    def __init__(
        self,
        store: AddressStore,
        cache: ResultCache,
        settings: Settings,
        *,
        planner: SpatialQueryPlanner | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._store = store
        self._cache = cache
        self._settings = settings
        self._planner = planner or SpatialQueryPlanner()
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        store: AddressStore,
        settings: Settings | None = None,
        *,
        overrides: Mapping[str, Any] | None = None,
        cache: ResultCache | None = None,
    ) -> "RadiusSearchService":
        settings = apply_settings_overrides(settings or get_settings(), overrides)
        return cls(store, cache or build_cache(settings), settings)

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def cache(self) -> ResultCache:
        return self._cache

    # -- query construction -------------------------------------------------

    def _unit(self, unit: DistanceUnit | str | None) -> DistanceUnit:
        return parse_unit(unit) if unit is not None else self._settings.spatial.default_unit

    def _algorithm(self, algorithm: DistanceAlgorithm | str | None) -> DistanceAlgorithm:
        return parse_algorithm(algorithm) if algorithm is not None else self._settings.spatial.default_algorithm

    def radius_query(
        self,
        center: PointLike,
        radius: float,
        unit: DistanceUnit | str | None = None,
        *,
        algorithm: DistanceAlgorithm | str | None = None,
        owner_type: str | None = None,
        owner_id: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> RadiusQuery:
        try:
            return RadiusQuery(
                center=_coerce_point(center),
                radius=radius,
                unit=self._unit(unit),
                algorithm=self._algorithm(algorithm),
                filters=SearchFilters(owner_type=owner_type, owner_id=owner_id),
                limit=limit if limit is not None else self._settings.spatial.default_limit,
                offset=offset,
            )
        except ValidationError as exc:
            raise InvalidInputError(str(exc)) from exc

    def nearest_query(
        self,
        center: PointLike,
        limit: int | None = None,
        unit: DistanceUnit | str | None = None,
        *,
        algorithm: DistanceAlgorithm | str | None = None,
        owner_type: str | None = None,
        owner_id: str | None = None,
    ) -> NearestQuery:
        try:
            return NearestQuery(
                center=_coerce_point(center),
                limit=limit if limit is not None else self._settings.spatial.default_nearest_limit,
                unit=self._unit(unit),
                algorithm=self._algorithm(algorithm),
                filters=SearchFilters(owner_type=owner_type, owner_id=owner_id),
            )
        except ValidationError as exc:
            raise InvalidInputError(str(exc)) from exc

    # -- cached search ------------------------------------------------------

    def _cached_search(self, payload: dict[str, Any], compute: Callable[[], SearchResult]) -> SearchResult:
        key = make_search_key(self._cache.prefix, payload)

        def build() -> dict[str, Any]:
            logger.debug("Cache miss for %s; querying store", key)
            # Empty results are cached too: an empty answer is still a valid answer.
            return compute().model_dump(mode="json")

        cached = self._cache.get_or_set(key, build, ttl_seconds=self._cache.search_ttl_seconds)
        try:
            return SearchResult.model_validate(cached)
        except ValidationError:
            logger.warning("Discarding unreadable cache entry %s", key)

        result = compute()
        self._cache.put(key, result.model_dump(mode="json"), ttl_seconds=self._cache.search_ttl_seconds)
        return result

    def find_within_radius(
        self,
        center: PointLike,
        radius: float,
        unit: DistanceUnit | str | None = None,
        **options: Any,
    ) -> SearchResult:
        """Records within `radius` of `center`, nearest first.

        Options: `algorithm`, `owner_type`, `owner_id`, `limit`, `offset`.
        """
        query = self.radius_query(center, radius, unit, **options)
        precision = self._settings.cache.coordinate_precision
        return self._cached_search(
            query.cache_payload(precision),
            lambda: self._planner.find_within_radius(self._store, query),
        )

    def find_nearest(
        self,
        center: PointLike,
        limit: int | None = None,
        unit: DistanceUnit | str | None = None,
        **options: Any,
    ) -> SearchResult:
        """The `limit` records closest to `center` (fewer if the store has fewer)."""
        query = self.nearest_query(center, limit, unit, **options)
        precision = self._settings.cache.coordinate_precision
        return self._cached_search(
            query.cache_payload(precision),
            lambda: self._planner.find_nearest(self._store, query),
        )

    def batch_find_within_radius(
        self,
        points: Sequence[PointLike],
        radius: float,
        unit: DistanceUnit | str | None = None,
        *,
        chunk_size: int | None = None,
        delay_seconds: float | None = None,
        cancel: CancelSignal | None = None,
        **options: Any,
    ) -> list[BatchItemResult]:
        """Run `find_within_radius` for each point; one `BatchItemResult` per point, in order.

        A failing point gets an `error` slot and the batch continues. `cancel` is
        checked before each chunk; once set, the remaining points come back as
        `cancelled`.
        """
        size = chunk_size if chunk_size is not None else self._settings.batch.chunk_size
        if size < 1:
            raise InvalidInputError("chunk_size must be >= 1")
        delay = delay_seconds if delay_seconds is not None else self._settings.batch.inter_chunk_delay_seconds

        results: list[BatchItemResult] = []
        for start in range(0, len(points), size):
            if _is_cancelled(cancel):
                logger.info("Batch radius search cancelled after %d of %d points", start, len(points))
                for index in range(start, len(points)):
                    results.append(
                        BatchItemResult(index=index, point=self._describe(points[index]), status="cancelled")
                    )
                break

            if start > 0 and delay > 0:
                self._sleep(delay)

            for index in range(start, min(start + size, len(points))):
                point = points[index]
                try:
                    result = self.find_within_radius(point, radius, unit, **options)
                except Exception as exc:
                    logger.warning("Batch radius search failed for point %d: %s", index, exc)
                    results.append(
                        BatchItemResult(
                            index=index,
                            point=self._describe(point),
                            status="error",
                            error=str(exc),
                            error_type=type(exc).__name__,
                        )
                    )
                else:
                    results.append(
                        BatchItemResult(index=index, point=self._describe(point), status="ok", result=result)
                    )
        return results

    @staticmethod
    def _describe(point: Any) -> dict[str, Any]:
        if isinstance(point, GeoPoint):
            return {"latitude": point.lat, "longitude": point.lon}
        if isinstance(point, Mapping):
            return dict(point)
        try:
            lat, lon = point
            return {"latitude": lat, "longitude": lon}
        except (TypeError, ValueError):
            return {"raw": repr(point)}

    # -- distances ----------------------------------------------------------

    def calculate_distance(
        self,
        a: PointLike,
        b: PointLike,
        unit: DistanceUnit | str | None = None,
        algorithm: DistanceAlgorithm | str | None = None,
        *,
        memo: DistanceMemo | None = None,
    ) -> float:
        """Memoized distance between two points.

        Pass the same `DistanceMemo` (see `new_distance_memo`) to every call of one
        operation to share an in-call memo. Without one, each call gets a fresh
        memo, so only the cache persists values, for `cache.distance_ttl_seconds`.
        """
        pa, pb = _coerce_point(a), _coerce_point(b)
        memo = memo if memo is not None else self.new_distance_memo()
        return memo.distance((pa.lat, pa.lon), (pb.lat, pb.lon), self._unit(unit), self._algorithm(algorithm))

    def new_distance_memo(self) -> DistanceMemo:
        return DistanceMemo(self._cache, precision=self._settings.cache.coordinate_precision)

    def invalidate_coordinates(self, point: PointLike) -> bool:
        """Call when a record's coordinates change, with its previous coordinates.

        Drops cached distances involving that point. Radius/nearest results are
        keyed by query, not by the records they returned, so they are not touched
        here and go stale for at most `cache.search_ttl_seconds`.
        """
        p = _coerce_point(point)
        return self.new_distance_memo().invalidate_point(p.lat, p.lon)

    def clear_cache(self) -> bool:
        """Forget all entries under the cache prefix (False when the backend cannot)."""
        return self._cache.forget_prefix()

    # -- diagnostics and maintenance ----------------------------------------

    def get_spatial_stats(self) -> SpatialStats:
        total = self._store.count(StoreQuery(require_coordinates=False))
        with_coordinates = self._store.count(StoreQuery(require_coordinates=True))
        try:
            index_present = bool(self._store.has_spatial_index())
        except Exception as exc:
            logger.warning("Spatial index check failed: %s", exc)
            index_present = False

        coverage = (with_coordinates / total) * 100 if total > 0 else 0.0
        cache_config = self._cache.config()
        cache_config["coordinate_precision"] = self._settings.cache.coordinate_precision
        cache_config["spatial_partition_size"] = self._settings.cache.spatial_partition_size
        return SpatialStats(
            total_records=total,
            records_with_coordinates=with_coordinates,
            coordinate_coverage_percent=coverage,
            spatial_index_present=index_present,
            cache_config=cache_config,
        )

    def optimize_store(self) -> OptimizeReport:
        """Best-effort maintenance; each step's failure is logged and reported, never raised."""
        report = OptimizeReport()

        try:
            report.index_created = bool(self._store.ensure_spatial_index())
        except Exception as exc:
            logger.error("Failed to create spatial index: %s", exc)
            report.index_created = False
            report.errors["spatial_index"] = str(exc)

        try:
            self._store.refresh_statistics()
            report.stats_updated = True
        except Exception as exc:
            logger.error("Failed to update table statistics: %s", exc)
            report.errors["table_stats"] = str(exc)

        try:
            report.query_uses_index = self._store.query_uses_index()
        except Exception as exc:
            logger.error("Failed to analyze query performance: %s", exc)
            report.errors["query_analysis"] = str(exc)

        return report

    def get_performance_metrics(self) -> dict[str, Any]:
        """Diagnostics snapshot.

        `cache_stats` is the active `record_cache_stats()` capture for the calling
        context, or None outside one.
        """
        mem = psutil.Process().memory_info()
        stats = current_cache_stats()
        return {
            "algorithms": [a.value for a in DistanceAlgorithm],
            "units": [u.value for u in DistanceUnit],
            "cache_config": self._cache.config(),
            "cache_stats": stats.as_dict() if stats is not None else None,
            "memory_rss_bytes": int(mem.rss),
            "memory_peak_rss_bytes": _peak_rss_bytes(mem),
            "spatial_stats": self.get_spatial_stats().model_dump(),
        }
