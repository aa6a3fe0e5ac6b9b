from __future__ import annotations

import contextvars
import json
import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from hashlib import sha256
from pathlib import Path
from typing import Any, Callable, Iterator, Protocol

from addressable.core.errors import CacheUnavailableError

"""
Cache layer.

Two parts:
- Backends (`MemoryCache`, `FileCache`) store JSON-compatible values with a TTL
  enforced on read. They raise `CacheUnavailableError` when the storage fails.
- `ResultCache` wraps a backend with a key prefix and default TTLs, and never
  lets a backend failure reach the caller: a failing read is a miss, a failing
  write is skipped, both with a warning.

Search keys are content hashes of the canonical query payload (see
`make_search_key`). Centers are rounded to 4 decimals (~11 m) before hashing, so
queries whose centers differ by less share a cache entry. That trades a little
positional precision for a much higher hit rate.

Distance keys embed the first point's rounded coordinates in clear text, so all
entries involving one coordinate pair can be dropped with a prefix delete.
"""

logger = logging.getLogger(__name__)

DEFAULT_SEARCH_TTL_SECONDS = 3600
DEFAULT_DISTANCE_TTL_SECONDS = 3600


@dataclass(frozen=True)
class CacheEntry:
    """Stored cache envelope."""

    key: str
    value: Any
    expires_at: float


@dataclass
class CacheStats:
    """Per-context cache usage stats (best-effort)."""

    hits: int = 0
    misses: int = 0
    expired: int = 0
    sets: int = 0
    deletes: int = 0
    errors: int = 0

    def as_dict(self) -> dict[str, int]:
        return {
            "hits": int(self.hits),
            "misses": int(self.misses),
            "expired": int(self.expired),
            "sets": int(self.sets),
            "deletes": int(self.deletes),
            "errors": int(self.errors),
        }


_cache_stats_var: contextvars.ContextVar[CacheStats | None] = contextvars.ContextVar(
    "addressable_cache_stats", default=None
)


def _stats() -> CacheStats | None:
    return _cache_stats_var.get()


@contextmanager
def record_cache_stats() -> Iterator[CacheStats]:
    """Capture cache stats within the current context (thread/task-safe)."""

    stats = CacheStats()
    token = _cache_stats_var.set(stats)
    try:
        yield stats
    finally:
        _cache_stats_var.reset(token)


def current_cache_stats() -> CacheStats | None:
    """The stats being recorded by the innermost `record_cache_stats()`, if any."""
    return _stats()


class CacheBackend(Protocol):
    """Key-value store with TTL. Prefix delete is optional (see `supports_prefix_delete`)."""

    supports_prefix_delete: bool

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    def delete(self, key: str) -> None: ...

    def delete_prefix(self, prefix: str) -> int: ...


class MemoryCache:
    """Process-local cache. Thread-safe; expiry uses a monotonic clock by default."""

    supports_prefix_delete = True

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                st = _stats()
                if st:
                    st.misses += 1
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[key]
                st = _stats()
                if st:
                    st.misses += 1
                    st.expired += 1
                return None
        st = _stats()
        if st:
            st.hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        entry = CacheEntry(key=key, value=value, expires_at=self._clock() + float(ttl_seconds))
        with self._lock:
            self._entries[key] = entry
        st = _stats()
        if st:
            st.sets += 1

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)
        st = _stats()
        if st:
            st.deletes += 1

    def delete_prefix(self, prefix: str) -> int:
        with self._lock:
            doomed = [k for k in self._entries if k.startswith(prefix)]
            for k in doomed:
                del self._entries[k]
        st = _stats()
        if st:
            st.deletes += len(doomed)
        return len(doomed)


class FileCache:
    """A filesystem-backed cache; one JSON file per key.

    File names are hashes of the key, so the original keys cannot be listed and
    prefix deletes are unsupported.
    """

    supports_prefix_delete = False

    def __init__(self, base_dir: Path, clock: Callable[[], float] = time.time):
        self._base_dir = Path(base_dir)
        self._clock = clock

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def _key_path(self, key: str) -> Path:
        """Return the file path for a cache entry (hash-based)."""
        digest = sha256(key.encode("utf-8")).hexdigest()
        return self._base_dir / digest[:2] / f"{digest}.json"

    def get(self, key: str) -> Any | None:
        """Read a cached value if present and not expired; otherwise return None."""
        path = self._key_path(key)
        if not path.exists():
            st = _stats()
            if st:
                st.misses += 1
            return None

        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            entry = CacheEntry(key=key, value=raw["value"], expires_at=float(raw["expires_at"]))
        except OSError as exc:
            raise CacheUnavailableError(f"Cannot read cache file {path}: {exc}") from exc
        except (ValueError, KeyError, TypeError):
            # Corrupt or foreign file; treat as a miss.
            st = _stats()
            if st:
                st.misses += 1
            return None

        if self._clock() >= entry.expires_at:
            st = _stats()
            if st:
                st.misses += 1
                st.expired += 1
            return None

        st = _stats()
        if st:
            st.hits += 1
        return entry.value

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Write a JSON-serializable value to disk.

        Notes:
        - Writes via a temporary file + atomic replace to avoid partial/corrupt cache files.
        """
        path = self._key_path(key)
        payload = {
            "key": key,
            "expires_at": self._clock() + float(ttl_seconds),
            "value": value,
        }
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp = path.with_suffix(f".{threading.get_ident()}.tmp")
            tmp.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
            tmp.replace(path)
        except OSError as exc:
            raise CacheUnavailableError(f"Cannot write cache file {path}: {exc}") from exc
        st = _stats()
        if st:
            st.sets += 1

    def delete(self, key: str) -> None:
        try:
            self._key_path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise CacheUnavailableError(f"Cannot delete cache entry: {exc}") from exc
        st = _stats()
        if st:
            st.deletes += 1

    def delete_prefix(self, prefix: str) -> int:
        raise CacheUnavailableError("FileCache cannot enumerate keys by prefix; check supports_prefix_delete")


def _canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def round_coordinate(value: float, precision: int = 4) -> float:
    # +0.0 folds -0.0 into 0.0 so both hash the same.
    return round(float(value), precision) + 0.0


def make_search_key(prefix: str, payload: dict[str, Any]) -> str:
    """Fixed-length key for a canonical query payload."""
    return prefix + "search:" + sha256(_canonical_json(payload).encode("utf-8")).hexdigest()


def coordinate_token(lat: float, lon: float, precision: int = 4) -> str:
    return f"{round_coordinate(lat, precision):.{precision}f},{round_coordinate(lon, precision):.{precision}f}"


def distance_key_prefix(prefix: str, lat: float, lon: float, precision: int = 4) -> str:
    return f"{prefix}distance:{coordinate_token(lat, lon, precision)}:"


def make_distance_key(
    prefix: str,
    a: tuple[float, float],
    b: tuple[float, float],
    unit: str,
    algorithm: str,
    precision: int = 4,
) -> str:
    tail = _canonical_json({"to": coordinate_token(b[0], b[1], precision), "unit": unit, "algorithm": algorithm})
    return distance_key_prefix(prefix, a[0], a[1], precision) + sha256(tail.encode("utf-8")).hexdigest()


class ResultCache:
    """Prefix-namespaced cache facade that degrades to "no cache" on backend failure."""

    def __init__(
        self,
        backend: CacheBackend,
        *,
        prefix: str = "radius_search_",
        enabled: bool = True,
        search_ttl_seconds: int = DEFAULT_SEARCH_TTL_SECONDS,
        distance_ttl_seconds: int = DEFAULT_DISTANCE_TTL_SECONDS,
    ):
        self._backend = backend
        self._prefix = prefix
        self._enabled = enabled
        self.search_ttl_seconds = int(search_ttl_seconds)
        self.distance_ttl_seconds = int(distance_ttl_seconds)

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    def _failed(self, op: str, key: str, exc: Exception) -> None:
        st = _stats()
        if st:
            st.errors += 1
        logger.warning("Cache %s failed for %s; continuing without cache: %s", op, key, exc)

    def get(self, key: str) -> Any | None:
        if not self._enabled:
            return None
        try:
            return self._backend.get(key)
        except Exception as exc:
            self._failed("get", key, exc)
            return None

    def put(self, key: str, value: Any, ttl_seconds: int | None = None) -> bool:
        if not self._enabled:
            return False
        ttl = self.search_ttl_seconds if ttl_seconds is None else int(ttl_seconds)
        try:
            self._backend.set(key, value, ttl)
        except Exception as exc:
            self._failed("put", key, exc)
            return False
        return True

    def forget(self, key: str) -> bool:
        if not self._enabled:
            return False
        try:
            self._backend.delete(key)
        except Exception as exc:
            self._failed("forget", key, exc)
            return False
        return True

    def forget_prefix(self, prefix: str | None = None) -> bool:
        """Drop every key starting with `prefix` (default: this cache's prefix).

        Returns False, with a warning, when the backend cannot delete by prefix;
        affected entries then age out through their TTL.
        """
        if not self._enabled:
            return False
        target = self._prefix if prefix is None else prefix
        if not getattr(self._backend, "supports_prefix_delete", False):
            logger.warning(
                "Cache backend %s does not support prefix deletes; entries under %r expire by TTL only.",
                type(self._backend).__name__,
                target,
            )
            return False
        try:
            removed = self._backend.delete_prefix(target)
        except Exception as exc:
            self._failed("forget_prefix", target, exc)
            return False
        logger.debug("Forgot %s cache entries under %r", removed, target)
        return True

    def get_or_set(self, key: str, builder: Callable[[], Any], ttl_seconds: int | None = None) -> Any:
        """Return the cached value, or compute it via `builder` and store it.

        Builder exceptions propagate and nothing is stored.
        """
        cached = self.get(key)
        if cached is not None:
            return cached
        value = builder()
        self.put(key, value, ttl_seconds=ttl_seconds)
        return value

    def config(self) -> dict[str, Any]:
        return {
            "enabled": self._enabled,
            "backend": type(self._backend).__name__,
            "prefix": self._prefix,
            "search_ttl_seconds": self.search_ttl_seconds,
            "distance_ttl_seconds": self.distance_ttl_seconds,
            "supports_prefix_delete": bool(getattr(self._backend, "supports_prefix_delete", False)),
        }
