from __future__ import annotations

# Settings come from the packaged YAML; a few env vars and per-service overrides sit on top.
import pytest

from addressable.config.overrides import apply_settings_overrides
from addressable.config.settings import get_settings


@pytest.fixture
def fresh_settings(monkeypatch):
    # get_settings() is lru_cached; clear it around each test so env changes take effect.
    for name in (
        "ADDRESSABLE_CONFIG_PATH",
        "ADDRESSABLE_LOG_LEVEL",
        "ADDRESSABLE_CACHE_BACKEND",
        "ADDRESSABLE_CACHE_DIR",
        "ADDRESSABLE_CACHE_ENABLED",
        "ADDRESSABLE_STORE_PATH",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield get_settings
    get_settings.cache_clear()


def test_packaged_defaults(fresh_settings):
    settings = fresh_settings()
    assert settings.cache.prefix == "radius_search_"
    assert settings.cache.search_ttl_seconds == 3600
    assert settings.cache.coordinate_precision == 4
    assert settings.spatial.default_unit.value == "kilometers"
    assert settings.spatial.default_algorithm.value == "haversine"
    assert settings.batch.chunk_size == 50
    assert settings.batch.inter_chunk_delay_seconds == 0.0


def test_env_overrides(fresh_settings, monkeypatch):
    monkeypatch.setenv("ADDRESSABLE_CACHE_BACKEND", "FILE")
    monkeypatch.setenv("ADDRESSABLE_CACHE_ENABLED", "no")
    monkeypatch.setenv("ADDRESSABLE_STORE_PATH", "/tmp/elsewhere.db")
    settings = fresh_settings()
    assert settings.cache.backend == "file"
    assert settings.cache.enabled is False
    assert settings.store.path == "/tmp/elsewhere.db"


def test_config_path_replaces_packaged_yaml(fresh_settings, monkeypatch, tmp_path):
    path = tmp_path / "custom.yaml"
    path.write_text("spatial:\n  default_unit: miles\nbatch:\n  chunk_size: 5\n", encoding="utf-8")
    monkeypatch.setenv("ADDRESSABLE_CONFIG_PATH", str(path))
    settings = fresh_settings()
    assert settings.spatial.default_unit.value == "miles"
    assert settings.batch.chunk_size == 5
    # Sections missing from the file fall back to model defaults.
    assert settings.cache.prefix == "radius_search_"


def test_apply_settings_overrides_returns_same_object_when_none(fresh_settings):
    settings = fresh_settings()
    assert apply_settings_overrides(settings, None) is settings


def test_apply_settings_overrides_can_override_allowed_knobs(fresh_settings):
    settings = fresh_settings()
    out = apply_settings_overrides(settings, {"cache": {"search_ttl_seconds": 60}, "batch": {"chunk_size": 7}})

    assert out.cache.search_ttl_seconds == 60
    assert out.batch.chunk_size == 7
    # The shared cached settings stay untouched.
    assert settings.cache.search_ttl_seconds == 3600


def test_apply_settings_overrides_rejects_disallowed_keys_with_clear_path(fresh_settings):
    settings = fresh_settings()
    with pytest.raises(ValueError, match=r"cache\.dir"):
        apply_settings_overrides(settings, {"cache": {"dir": "/etc"}})
    with pytest.raises(ValueError, match=r"store"):
        apply_settings_overrides(settings, {"store": {"path": "/etc/passwd"}})


def test_apply_settings_overrides_rejects_wrong_value_shapes(fresh_settings):
    settings = fresh_settings()
    with pytest.raises(ValueError, match=r"settings_overrides key 'cache' must be a mapping"):
        apply_settings_overrides(settings, {"cache": 1})


def test_apply_settings_overrides_revalidates_ranges(fresh_settings):
    settings = fresh_settings()
    with pytest.raises(ValueError):
        apply_settings_overrides(settings, {"batch": {"chunk_size": 0}})
