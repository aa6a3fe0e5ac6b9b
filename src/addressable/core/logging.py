"""
Logging configuration.

The packaged YAML (`src/addressable/config/logging.yaml`) sets up one console
handler. Settings then decide:
- the root/handler level (`app.log_level`, or `ADDRESSABLE_LOG_LEVEL`)
- per-logger levels (`app.logger_levels`), e.g. to trace only the planner

Library modules only call `logging.getLogger(__name__)`; applications decide
whether to call `configure_logging()` or wire logging themselves.
"""

from __future__ import annotations

import copy
import logging.config

from addressable.config.settings import Settings, get_logging_config, get_settings


def configure_logging(settings: Settings | None = None) -> str:
    """Apply packaged YAML config + settings; returns the root level name."""
    settings = settings or get_settings()
    config = copy.deepcopy(get_logging_config())

    level = settings.app.log_level.upper()
    config.setdefault("root", {})["level"] = level

    overrides = {name: lvl.upper() for name, lvl in settings.app.logger_levels.items()}
    # Handlers must pass the most verbose level any logger asks for.
    numeric = [logging.getLevelName(v) for v in (level, *overrides.values())]
    handler_level = min((n for n in numeric if isinstance(n, int)), default=level)
    for handler in config.get("handlers", {}).values():
        if isinstance(handler, dict) and "level" in handler:
            handler["level"] = handler_level

    loggers = config.setdefault("loggers", {})
    for name, lvl in overrides.items():
        loggers.setdefault(name, {"propagate": True})["level"] = lvl

    logging.config.dictConfig(config)
    return level
