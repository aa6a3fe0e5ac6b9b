"""
Library settings (Pydantic).

Settings are loaded from `src/addressable/config/defaults.yaml`, then optionally overridden by:
- an external YAML file via `ADDRESSABLE_CONFIG_PATH`
- a small whitelist of environment variables (e.g., `ADDRESSABLE_LOG_LEVEL`)

Design rule:
- Tuning knobs live in YAML, not hard-coded in business logic.
- Services receive a `Settings` object in their constructor; nothing below the
  wiring helpers calls `get_settings()` on its own.
"""

from __future__ import annotations

import os
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field

from addressable.core.env import load_dotenv_if_present
from addressable.core.geo import DistanceAlgorithm, DistanceUnit


def _read_package_yaml(filename: str) -> dict[str, Any]:
    """Read a YAML file packaged inside `addressable.config`."""
    text = resources.files("addressable.config").joinpath(filename).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {filename}; expected a mapping.")
    return data


def _read_yaml_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML file from disk and return its mapping root."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {path}; expected a mapping.")
    return data


class AppSettings(BaseModel):
    name: str = "addressable"
    log_level: str = "INFO"
    # Per-logger levels, e.g. {"addressable.search.planner": "DEBUG"}.
    logger_levels: dict[str, str] = Field(default_factory=dict)


class CacheSettings(BaseModel):
    enabled: bool = True
    backend: Literal["memory", "file"] = "memory"
    dir: str = ".cache/addressable"
    prefix: str = "radius_search_"
    search_ttl_seconds: int = Field(3600, gt=0)
    distance_ttl_seconds: int = Field(3600, gt=0)
    coordinate_precision: int = Field(4, ge=0, le=8)
    spatial_partition_size: float = Field(0.1, gt=0)


class SpatialSettings(BaseModel):
    default_unit: DistanceUnit = DistanceUnit.KILOMETERS
    default_algorithm: DistanceAlgorithm = DistanceAlgorithm.HAVERSINE
    default_limit: int = Field(100, ge=1)
    default_nearest_limit: int = Field(10, ge=1)


class BatchSettings(BaseModel):
    chunk_size: int = Field(50, ge=1)
    inter_chunk_delay_seconds: float = Field(0.0, ge=0)


class StoreSettings(BaseModel):
    path: str = "data/addresses.db"
    table: str = Field("addresses", pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    spatial_index_name: str = Field("addresses_location_index", pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    grid_cell_degrees: float = Field(0.25, gt=0)


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    spatial: SpatialSettings = Field(default_factory=SpatialSettings)
    batch: BatchSettings = Field(default_factory=BatchSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay selected environment variables onto raw settings payload.

    Note: We intentionally keep this whitelist small.
    """
    load_dotenv_if_present()
    data = dict(data)

    log_level = os.getenv("ADDRESSABLE_LOG_LEVEL")
    if log_level:
        data.setdefault("app", {})["log_level"] = log_level

    cache_backend = os.getenv("ADDRESSABLE_CACHE_BACKEND")
    if cache_backend:
        data.setdefault("cache", {})["backend"] = cache_backend.strip().lower()

    cache_dir = os.getenv("ADDRESSABLE_CACHE_DIR")
    if cache_dir:
        data.setdefault("cache", {})["dir"] = cache_dir

    cache_enabled = os.getenv("ADDRESSABLE_CACHE_ENABLED")
    if cache_enabled:
        data.setdefault("cache", {})["enabled"] = cache_enabled.strip().lower() in {"1", "true", "yes", "y"}

    store_path = os.getenv("ADDRESSABLE_STORE_PATH")
    if store_path:
        data.setdefault("store", {})["path"] = store_path

    return data


@lru_cache
def get_settings() -> Settings:
    """Load and validate settings (cached)."""
    load_dotenv_if_present()
    config_path = os.getenv("ADDRESSABLE_CONFIG_PATH")
    raw = _read_yaml_file(config_path) if config_path else _read_package_yaml("defaults.yaml")
    raw = _apply_env_overrides(raw)
    return Settings.model_validate(raw)


@lru_cache
def get_logging_config() -> dict[str, Any]:
    """Load logging configuration (cached)."""
    return _read_package_yaml("logging.yaml")
