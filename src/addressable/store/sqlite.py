"""
SQLite-backed address store.

Bounding-box predicates run against plain REAL columns (indexed by
`ensure_spatial_index`). Distance pushdown uses a SQL function registered on
each connection that calls the same distance engine as the planner, so store
ordering and planner refinement always agree.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator

from addressable.config.settings import Settings
from addressable.core.env import resolve_project_path
from addressable.core.errors import MaintenanceError, StoreUnavailableError
from addressable.core.geo import calculate_distance
from addressable.domain.models import AddressRecord
from addressable.store.base import StoreQuery

logger = logging.getLogger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_COLUMNS = (
    "id",
    "owner_type",
    "owner_id",
    "latitude",
    "longitude",
    "label",
    "street",
    "city",
    "state",
    "postal_code",
    "country_code",
)


def _sql_distance(lat, lon, center_lat, center_lon, unit, algorithm):
    if lat is None or lon is None:
        return None
    return calculate_distance(center_lat, center_lon, lat, lon, unit, algorithm)


class SqliteAddressStore:
    supports_distance_projection = True

    def __init__(
        self,
        db_path: str | Path,
        *,
        table: str = "addresses",
        spatial_index_name: str = "addresses_location_index",
        create: bool = True,
    ):
        if not _IDENTIFIER.match(table) or not _IDENTIFIER.match(spatial_index_name):
            raise ValueError("table and index names must be plain SQL identifiers")
        self._db_path = str(db_path)
        self._table = table
        self._index_name = spatial_index_name
        if create:
            self.init_db()

    @classmethod
    def from_settings(cls, settings: Settings) -> "SqliteAddressStore":
        """Open the store configured in `settings.store` (relative paths resolve against the project root)."""
        path = resolve_project_path(settings.store.path, create_parent=True)
        return cls(path, table=settings.store.table, spatial_index_name=settings.store.spatial_index_name)

    @property
    def db_path(self) -> str:
        return self._db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        with closing(sqlite3.connect(self._db_path)) as conn:
            conn.row_factory = sqlite3.Row
            conn.create_function("addressable_distance", 6, _sql_distance, deterministic=True)
            with conn:
                yield conn

    def init_db(self) -> None:
        """Create the addresses table if it does not exist (no spatial index)."""
        try:
            with self._connect() as conn:
                conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {self._table} (
                        id TEXT PRIMARY KEY,
                        owner_type TEXT,
                        owner_id TEXT,
                        latitude REAL,
                        longitude REAL,
                        label TEXT,
                        street TEXT,
                        city TEXT,
                        state TEXT,
                        postal_code TEXT,
                        country_code TEXT
                    )
                    """
                )
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Cannot initialize {self._db_path}: {exc}") from exc

    def upsert_many(self, records: Iterable[AddressRecord]) -> int:
        rows = [tuple(getattr(r, c) for c in _COLUMNS) for r in records]
        placeholders = ", ".join("?" for _ in _COLUMNS)
        updates = ", ".join(f"{c} = excluded.{c}" for c in _COLUMNS if c != "id")
        try:
            with self._connect() as conn:
                conn.executemany(
                    f"INSERT INTO {self._table} ({', '.join(_COLUMNS)}) VALUES ({placeholders}) "
                    f"ON CONFLICT(id) DO UPDATE SET {updates}",
                    rows,
                )
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Cannot write addresses: {exc}") from exc
        return len(rows)

    def upsert(self, record: AddressRecord) -> None:
        self.upsert_many([record])

    def _where(self, query: StoreQuery) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        if query.require_coordinates or query.bbox is not None:
            clauses.append("latitude IS NOT NULL AND longitude IS NOT NULL")
        if query.bbox is not None:
            box = query.bbox
            clauses.append("latitude BETWEEN ? AND ?")
            params.extend([box.min_lat, box.max_lat])
            ranges = box.lon_ranges()
            # Antimeridian-crossing boxes become two ranges joined by OR.
            clauses.append("(" + " OR ".join("longitude BETWEEN ? AND ?" for _ in ranges) + ")")
            for lo, hi in ranges:
                params.extend([lo, hi])
        if query.owner_type is not None:
            clauses.append("owner_type = ?")
            params.append(query.owner_type)
        if query.owner_id is not None:
            clauses.append("owner_id = ?")
            params.append(query.owner_id)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params

    def fetch(self, query: StoreQuery) -> list[AddressRecord]:
        where, params = self._where(query)
        select = ", ".join(_COLUMNS)
        order = "ORDER BY rowid"
        if query.projection is not None:
            p = query.projection
            select += ", addressable_distance(latitude, longitude, ?, ?, ?, ?) AS distance"
            params = [p.lat, p.lon, p.unit.value, p.algorithm.value, *params]
            order = "ORDER BY distance, id"
        sql = f"SELECT {select} FROM {self._table} {where} {order} LIMIT ? OFFSET ?"
        params.extend([-1 if query.limit is None else query.limit, query.offset])

        try:
            with self._connect() as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Address query failed: {exc}") from exc
        return [AddressRecord(**{c: row[c] for c in _COLUMNS}) for row in rows]

    def count(self, query: StoreQuery) -> int:
        where, params = self._where(query)
        try:
            with self._connect() as conn:
                (n,) = conn.execute(f"SELECT COUNT(*) FROM {self._table} {where}", params).fetchone()
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Address count failed: {exc}") from exc
        return int(n)

    def has_spatial_index(self) -> bool:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT 1 FROM sqlite_master WHERE type = 'index' AND name = ?",
                    (self._index_name,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Index lookup failed: {exc}") from exc
        return row is not None

    def ensure_spatial_index(self) -> bool:
        try:
            existed = self.has_spatial_index()
            with self._connect() as conn:
                conn.execute(
                    f"CREATE INDEX IF NOT EXISTS {self._index_name} ON {self._table} (latitude, longitude)"
                )
        except (sqlite3.Error, StoreUnavailableError) as exc:
            raise MaintenanceError(f"Failed to create spatial index: {exc}") from exc
        if not existed:
            logger.info("Created spatial index %s on %s", self._index_name, self._table)
        return not existed

    def refresh_statistics(self) -> None:
        try:
            with self._connect() as conn:
                conn.execute(f"ANALYZE {self._table}")
        except sqlite3.Error as exc:
            raise MaintenanceError(f"Failed to update table statistics: {exc}") from exc

    def query_uses_index(self) -> bool | None:
        sql = (
            f"EXPLAIN QUERY PLAN SELECT * FROM {self._table} "
            "WHERE latitude BETWEEN ? AND ? AND longitude BETWEEN ? AND ?"
        )
        try:
            with self._connect() as conn:
                plan = conn.execute(sql, (40.6, 40.8, -74.1, -73.9)).fetchall()
        except sqlite3.Error as exc:
            raise MaintenanceError(f"Failed to analyze query plan: {exc}") from exc
        details = " ".join(str(row["detail"]) for row in plan)
        return self._index_name in details
