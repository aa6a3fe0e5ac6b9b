"""
Lightweight spatial indexing (grid bucket) for lat/lon points.

Buckets items into fixed-size degree cells so bounding-box lookups only touch the
cells the box overlaps instead of scanning every item. Used by the in-memory
address store as its "spatial index".
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Generic, Iterable, TypeVar

from addressable.core.geo import BoundingBox

T = TypeVar("T")


@dataclass(frozen=True)
class _Entry(Generic[T]):
    item: T
    lat: float
    lon: float


class SpatialGridIndex(Generic[T]):
    def __init__(
        self,
        items: Iterable[T],
        *,
        get_latlon: Callable[[T], tuple[float, float] | None],
        cell_size_deg: float = 0.25,
    ):
        if float(cell_size_deg) <= 0:
            raise ValueError("cell_size_deg must be > 0")
        self._cell_size_deg = float(cell_size_deg)
        self._cells: dict[tuple[int, int], list[_Entry[T]]] = {}
        self._size = 0

        for it in items:
            latlon = get_latlon(it)
            if latlon is None:
                continue
            lat_f, lon_f = float(latlon[0]), float(latlon[1])
            e = _Entry(item=it, lat=lat_f, lon=lon_f)
            self._cells.setdefault(self._cell_key(lat_f, lon_f), []).append(e)
            self._size += 1

    def __len__(self) -> int:
        return self._size

    @property
    def cell_size_deg(self) -> float:
        return self._cell_size_deg

    @property
    def cell_count(self) -> int:
        return len(self._cells)

    def _cell_key(self, lat: float, lon: float) -> tuple[int, int]:
        return (
            int(math.floor(lat / self._cell_size_deg)),
            int(math.floor(lon / self._cell_size_deg)),
        )

    def query_bbox(self, box: BoundingBox) -> list[T]:
        """Return items inside `box` (inclusive edges; antimeridian-crossing boxes included)."""
        out: list[T] = []
        for min_lon, max_lon in box.lon_ranges():
            part = BoundingBox(box.min_lat, box.max_lat, min_lon, max_lon)
            for cell in self._cells_for(part):
                for e in cell:
                    if part.contains(e.lat, e.lon):
                        out.append(e.item)
        return out

    def _cells_for(self, box: BoundingBox) -> list[list[_Entry[T]]]:
        lo_y, lo_x = self._cell_key(box.min_lat, box.min_lon)
        hi_y, hi_x = self._cell_key(box.max_lat, box.max_lon)

        # Wide boxes (near the poles) touch more cells than exist; scan what is there.
        if (hi_y - lo_y + 1) * (hi_x - lo_x + 1) > len(self._cells):
            return [
                cell
                for (cy, cx), cell in self._cells.items()
                if lo_y <= cy <= hi_y and lo_x <= cx <= hi_x
            ]
        return [
            self._cells[(cy, cx)]
            for cy in range(lo_y, hi_y + 1)
            for cx in range(lo_x, hi_x + 1)
            if (cy, cx) in self._cells
        ]
