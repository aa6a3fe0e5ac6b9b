"""
Error taxonomy for the geospatial search core.

Callers can catch `AddressableError` to handle everything raised here, or the
specific subclasses when they need to tell "bad input" from "storage is down".
"""

from __future__ import annotations


class AddressableError(Exception):
    """Base class for all errors raised by the search core."""


class InvalidInputError(AddressableError, ValueError):
    """Malformed coordinate, non-positive radius/limit, unknown unit or algorithm."""


class StoreUnavailableError(AddressableError):
    """The address store failed to respond or raised while querying."""


class MaintenanceError(AddressableError):
    """Index creation or statistics refresh failed (never fatal to searches)."""


class CacheUnavailableError(AddressableError):
    """The cache backend failed; callers degrade to uncached computation."""
