"""
In-memory address store.

Holds records in insertion order. Without a spatial index every query scans all
records; `ensure_spatial_index()` builds a degree-grid index that bounding-box
queries use instead. The index is rebuilt on writes and by `refresh_statistics()`.
"""

from __future__ import annotations

import threading
from typing import Iterable

from addressable.config.settings import Settings
from addressable.core.errors import StoreUnavailableError
from addressable.core.spatial_index import SpatialGridIndex
from addressable.domain.models import AddressRecord
from addressable.store.base import StoreQuery


class InMemoryAddressStore:
    supports_distance_projection = False

    def __init__(self, records: Iterable[AddressRecord] = (), *, grid_cell_degrees: float = 0.25):
        self._grid_cell_degrees = float(grid_cell_degrees)
        self._records: dict[str, AddressRecord] = {}
        self._order: dict[str, int] = {}
        self._index: SpatialGridIndex[AddressRecord] | None = None
        self._lock = threading.RLock()
        for r in records:
            self.upsert(r)

    @classmethod
    def from_settings(
        cls, settings: Settings, records: Iterable[AddressRecord] = ()
    ) -> "InMemoryAddressStore":
        """Empty (or pre-filled) store using `settings.store.grid_cell_degrees` for its index."""
        return cls(records, grid_cell_degrees=settings.store.grid_cell_degrees)

    @property
    def grid_cell_degrees(self) -> float:
        return self._grid_cell_degrees

    def __len__(self) -> int:
        return len(self._records)

    def upsert(self, record: AddressRecord) -> None:
        with self._lock:
            if record.id not in self._order:
                self._order[record.id] = len(self._order)
            self._records[record.id] = record
            if self._index is not None:
                self._rebuild_index()

    def upsert_many(self, records: Iterable[AddressRecord]) -> int:
        n = 0
        for r in records:
            self.upsert(r)
            n += 1
        return n

    def delete(self, record_id: str) -> bool:
        with self._lock:
            removed = self._records.pop(record_id, None) is not None
            if removed and self._index is not None:
                self._rebuild_index()
            return removed

    def get(self, record_id: str) -> AddressRecord | None:
        return self._records.get(record_id)

    def _rebuild_index(self) -> None:
        self._index = SpatialGridIndex(
            list(self._records.values()),
            get_latlon=lambda r: (r.latitude, r.longitude) if r.has_coordinates() else None,
            cell_size_deg=self._grid_cell_degrees,
        )

    def _matches(self, r: AddressRecord, query: StoreQuery) -> bool:
        if query.require_coordinates and not r.has_coordinates():
            return False
        if query.bbox is not None and (
            not r.has_coordinates() or not query.bbox.contains(r.latitude, r.longitude)
        ):
            return False
        if query.owner_type is not None and r.owner_type != query.owner_type:
            return False
        if query.owner_id is not None and r.owner_id != query.owner_id:
            return False
        return True

    def _select(self, query: StoreQuery) -> list[AddressRecord]:
        if query.projection is not None:
            raise StoreUnavailableError(
                "InMemoryAddressStore does not compute distances; check supports_distance_projection"
            )
        with self._lock:
            if query.bbox is not None and self._index is not None:
                candidates = self._index.query_bbox(query.bbox)
            else:
                candidates = list(self._records.values())
            out = [r for r in candidates if self._matches(r, query)]
            out.sort(key=lambda r: self._order[r.id])
        return out

    def fetch(self, query: StoreQuery) -> list[AddressRecord]:
        out = self._select(query)
        end = None if query.limit is None else query.offset + query.limit
        return out[query.offset : end]

    def count(self, query: StoreQuery) -> int:
        return len(self._select(query))

    def has_spatial_index(self) -> bool:
        return self._index is not None

    def ensure_spatial_index(self) -> bool:
        with self._lock:
            if self._index is not None:
                return False
            self._rebuild_index()
            return True

    def refresh_statistics(self) -> None:
        with self._lock:
            if self._index is not None:
                self._rebuild_index()

    def query_uses_index(self) -> bool | None:
        return self._index is not None
