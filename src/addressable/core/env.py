"""
Environment + project-root helpers.

Local deployments keep their overrides (store path, cache dir, log level) in a
repo-local `.env` file, and relative paths such as `data/addresses.db` must
resolve the same way whether code runs from the repo root, `tests/` or a
notebook elsewhere.

- `load_dotenv_if_present()`: load `.env` once; never overrides variables already set
- `get_project_root()`: `ADDRESSABLE_PROJECT_ROOT`, else the parent of
  `ADDRESSABLE_ENV_FILE`, else the nearest parent with a root marker
- `resolve_project_path()`: absolute paths pass through; relative ones hang off the root
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

# Checked in order for each parent directory; the first hit wins.
_ROOT_MARKERS: tuple[tuple[str, ...], ...] = ((".env",), (".git",), ("pyproject.toml", "src"))


def _has_marker(path: Path) -> bool:
    return any(all((path / name).exists() for name in marker) for marker in _ROOT_MARKERS)


@lru_cache
def get_project_root() -> Path:
    """Return the best-guess project root directory (cached)."""
    override = os.getenv("ADDRESSABLE_PROJECT_ROOT")
    if override:
        return Path(override).expanduser().resolve()

    env_file = os.getenv("ADDRESSABLE_ENV_FILE")
    if env_file:
        return Path(env_file).expanduser().resolve().parent

    cwd = Path.cwd().resolve()
    return next((p for p in (cwd, *cwd.parents) if _has_marker(p)), cwd)


@lru_cache
def load_dotenv_if_present() -> Path | None:
    """Load `ADDRESSABLE_ENV_FILE` (or `<root>/.env`) once; returns the loaded path."""
    explicit = os.getenv("ADDRESSABLE_ENV_FILE")
    env_path = Path(explicit).expanduser().resolve() if explicit else get_project_root() / ".env"
    if not env_path.is_file():
        return None
    load_dotenv(dotenv_path=env_path, override=False)
    return env_path


def reset_env_caches() -> None:
    """Forget the cached root and `.env` state (after changing the environment)."""
    get_project_root.cache_clear()
    load_dotenv_if_present.cache_clear()


def resolve_project_path(path: str | Path, *, create_parent: bool = False, create_dir: bool = False) -> Path:
    """Resolve `path` against the project root.

    `create_parent` makes the containing directory (for files such as the
    SQLite database); `create_dir` makes the path itself (for cache dirs).
    """
    p = Path(path).expanduser()
    resolved = p if p.is_absolute() else (get_project_root() / p).resolve()
    if create_dir:
        resolved.mkdir(parents=True, exist_ok=True)
    elif create_parent:
        resolved.parent.mkdir(parents=True, exist_ok=True)
    return resolved
