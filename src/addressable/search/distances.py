"""
Per-pair distance memoization in two explicit layers.

- `memo`: a plain dict owned by one `DistanceMemo` instance. Create one per
  operation (e.g., per batch) so repeated pairs inside that operation are free.
- `cache`: the shared `ResultCache`, which persists values across operations
  until their TTL runs out.

Each value is written under both orientations of the pair, and each key starts
with its first point's rounded coordinates. A cached value only counts as a hit
when both orientations are present, so dropping one point's prefix
(`invalidate_point`) invalidates every pair that involves it.
"""

from __future__ import annotations

from addressable.core.cache import ResultCache, coordinate_token, distance_key_prefix, make_distance_key
from addressable.core.geo import DistanceAlgorithm, DistanceUnit, calculate_distance


class DistanceMemo:
    def __init__(self, cache: ResultCache, *, precision: int = 4):
        self._cache = cache
        self._precision = precision
        self.memo: dict[tuple[str, str, str, str], float] = {}

    def _key(
        self, a: tuple[float, float], b: tuple[float, float], unit: DistanceUnit, algorithm: DistanceAlgorithm
    ) -> str:
        return make_distance_key(self._cache.prefix, a, b, unit.value, algorithm.value, self._precision)

    def distance(
        self,
        a: tuple[float, float],
        b: tuple[float, float],
        unit: DistanceUnit,
        algorithm: DistanceAlgorithm,
    ) -> float:
        memo_key = (
            coordinate_token(a[0], a[1], self._precision),
            coordinate_token(b[0], b[1], self._precision),
            unit.value,
            algorithm.value,
        )
        if memo_key in self.memo:
            return self.memo[memo_key]

        forward = self._key(a, b, unit, algorithm)
        reverse = self._key(b, a, unit, algorithm)
        cached = self._cache.get(forward)
        if cached is not None and self._cache.get(reverse) is not None:
            value = float(cached)
        else:
            value = calculate_distance(a[0], a[1], b[0], b[1], unit, algorithm)
            ttl = self._cache.distance_ttl_seconds
            self._cache.put(forward, value, ttl_seconds=ttl)
            self._cache.put(reverse, value, ttl_seconds=ttl)

        self.memo[memo_key] = value
        return value

    def invalidate_point(self, lat: float, lon: float) -> bool:
        """Forget every memoized distance that involves (lat, lon)."""
        token = coordinate_token(lat, lon, self._precision)
        self.memo = {k: v for k, v in self.memo.items() if token not in (k[0], k[1])}
        return self._cache.forget_prefix(distance_key_prefix(self._cache.prefix, lat, lon, self._precision))
