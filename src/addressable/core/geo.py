from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from pydantic import BaseModel, ConfigDict, Field

from addressable.core.errors import InvalidInputError

"""
Distance engine.

Pure math, no I/O: great-circle distances under three algorithms, bounding boxes
for the store pre-filter, midpoints, DMS conversion and point-in-polygon.

Every unit carries its own Earth-radius constant. Unit conversion always goes
through those constants (meters per unit = 6,371,000 / radius), never through a
separate table of cross-unit factors.
"""

EARTH_RADIUS_M = 6_371_000.0

# WGS84 ellipsoid.
WGS84_A = 6378137.0
WGS84_B = 6356752.314245
WGS84_F = 1 / 298.257223563

VINCENTY_TOLERANCE = 1e-12
VINCENTY_MAX_ITERATIONS = 100


class DistanceUnit(str, Enum):
    KILOMETERS = "kilometers"
    MILES = "miles"
    METERS = "meters"
    FEET = "feet"

    @property
    def earth_radius(self) -> float:
        return _EARTH_RADIUS[self]

    @property
    def meters_per_unit(self) -> float:
        return EARTH_RADIUS_M / _EARTH_RADIUS[self]


_EARTH_RADIUS: dict[DistanceUnit, float] = {
    DistanceUnit.KILOMETERS: 6371.0,
    DistanceUnit.MILES: 3959.0,
    DistanceUnit.METERS: EARTH_RADIUS_M,
    DistanceUnit.FEET: 20_902_231.0,
}


class DistanceAlgorithm(str, Enum):
    HAVERSINE = "haversine"
    VINCENTY = "vincenty"
    SPHERICAL_LAW = "spherical_law"


def parse_unit(unit: DistanceUnit | str) -> DistanceUnit:
    """Coerce a unit name to `DistanceUnit` (raises `InvalidInputError`)."""
    if isinstance(unit, DistanceUnit):
        return unit
    try:
        return DistanceUnit(str(unit).strip().lower())
    except ValueError:
        allowed = ", ".join(u.value for u in DistanceUnit)
        raise InvalidInputError(f"Unknown distance unit '{unit}'; expected one of: {allowed}") from None


def parse_algorithm(algorithm: DistanceAlgorithm | str) -> DistanceAlgorithm:
    """Coerce an algorithm name to `DistanceAlgorithm` (raises `InvalidInputError`)."""
    if isinstance(algorithm, DistanceAlgorithm):
        return algorithm
    try:
        return DistanceAlgorithm(str(algorithm).strip().lower())
    except ValueError:
        allowed = ", ".join(a.value for a in DistanceAlgorithm)
        raise InvalidInputError(
            f"Unknown distance algorithm '{algorithm}'; expected one of: {allowed}"
        ) from None


def validate_coordinate(lat: float, lon: float) -> None:
    """Raise `InvalidInputError` unless lat is in [-90, 90] and lon in [-180, 180]."""
    if lat is None or lon is None or math.isnan(lat) or math.isnan(lon):
        raise InvalidInputError("Coordinates must be numbers")
    if not -90.0 <= lat <= 90.0:
        raise InvalidInputError(f"Latitude {lat} out of range [-90, 90]")
    if not -180.0 <= lon <= 180.0:
        raise InvalidInputError(f"Longitude {lon} out of range [-180, 180]")


class GeoPoint(BaseModel):
    """A geographic point in decimal degrees."""

    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)


@dataclass(frozen=True)
class BoundingBox:
    """Lat/lon envelope with inclusive edges.

    `min_lon > max_lon` means the box crosses the antimeridian: it covers
    [min_lon, 180] and [-180, max_lon].
    """

    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    @property
    def crosses_antimeridian(self) -> bool:
        return self.min_lon > self.max_lon

    def lon_ranges(self) -> list[tuple[float, float]]:
        if self.crosses_antimeridian:
            return [(self.min_lon, 180.0), (-180.0, self.max_lon)]
        return [(self.min_lon, self.max_lon)]

    def contains(self, lat: float, lon: float) -> bool:
        if not self.min_lat <= lat <= self.max_lat:
            return False
        return any(lo <= lon <= hi for lo, hi in self.lon_ranges())

    def as_dict(self) -> dict[str, float]:
        return {
            "min_lat": self.min_lat,
            "max_lat": self.max_lat,
            "min_lon": self.min_lon,
            "max_lon": self.max_lon,
        }


@dataclass(frozen=True)
class DMS:
    """Degrees/minutes/seconds; `seconds` keeps full precision, `str()` rounds for display."""

    degrees: int
    minutes: int
    seconds: float
    negative: bool = False

    def __str__(self) -> str:
        sign = "-" if self.negative else ""
        return f"{sign}{self.degrees}°{self.minutes}'{self.seconds:.2f}\""


def haversine(
    lat1: float, lon1: float, lat2: float, lon2: float, unit: DistanceUnit | str = DistanceUnit.KILOMETERS
) -> float:
    """Great-circle distance on a spherical Earth."""
    radius = parse_unit(unit).earth_radius
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lon2 - lon1)

    h = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    # Rounding can push h a hair above 1 for antipodal points.
    h = min(1.0, max(0.0, h))
    return 2 * radius * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def vincenty(
    lat1: float, lon1: float, lat2: float, lon2: float, unit: DistanceUnit | str = DistanceUnit.KILOMETERS
) -> float:
    """Ellipsoidal (WGS84) distance via Vincenty's inverse formula.

    Known precision limit: when the iteration does not converge within
    `VINCENTY_MAX_ITERATIONS` (nearly antipodal points) or the points coincide
    (sin sigma == 0), this returns 0.0 instead of raising. Callers that need a
    guaranteed value for such inputs should use `haversine`.
    """
    u = parse_unit(unit)
    a, b, f = WGS84_A, WGS84_B, WGS84_F

    L = math.radians(lon2 - lon1)
    U1 = math.atan((1 - f) * math.tan(math.radians(lat1)))
    U2 = math.atan((1 - f) * math.tan(math.radians(lat2)))
    sin_u1, cos_u1 = math.sin(U1), math.cos(U1)
    sin_u2, cos_u2 = math.sin(U2), math.cos(U2)

    lam = L
    for _ in range(VINCENTY_MAX_ITERATIONS):
        sin_lam, cos_lam = math.sin(lam), math.cos(lam)
        sin_sigma = math.sqrt(
            (cos_u2 * sin_lam) ** 2 + (cos_u1 * sin_u2 - sin_u1 * cos_u2 * cos_lam) ** 2
        )
        if sin_sigma == 0:
            return 0.0
        cos_sigma = sin_u1 * sin_u2 + cos_u1 * cos_u2 * cos_lam
        sigma = math.atan2(sin_sigma, cos_sigma)
        sin_alpha = cos_u1 * cos_u2 * sin_lam / sin_sigma
        cos_sq_alpha = 1 - sin_alpha**2
        # Equatorial line: cos_sq_alpha == 0.
        cos_2sigma_m = cos_sigma - 2 * sin_u1 * sin_u2 / cos_sq_alpha if cos_sq_alpha != 0 else 0.0
        C = f / 16 * cos_sq_alpha * (4 + f * (4 - 3 * cos_sq_alpha))
        lam_prev = lam
        lam = L + (1 - C) * f * sin_alpha * (
            sigma + C * sin_sigma * (cos_2sigma_m + C * cos_sigma * (-1 + 2 * cos_2sigma_m**2))
        )
        if abs(lam - lam_prev) < VINCENTY_TOLERANCE:
            break
    else:
        return 0.0

    u_sq = cos_sq_alpha * (a**2 - b**2) / b**2
    A = 1 + u_sq / 16384 * (4096 + u_sq * (-768 + u_sq * (320 - 175 * u_sq)))
    B = u_sq / 1024 * (256 + u_sq * (-128 + u_sq * (74 - 47 * u_sq)))
    delta_sigma = B * sin_sigma * (
        cos_2sigma_m
        + B
        / 4
        * (
            cos_sigma * (-1 + 2 * cos_2sigma_m**2)
            - B / 6 * cos_2sigma_m * (-3 + 4 * sin_sigma**2) * (-3 + 4 * cos_2sigma_m**2)
        )
    )
    meters = b * A * (sigma - delta_sigma)
    return meters / u.meters_per_unit


def spherical_law(
    lat1: float, lon1: float, lat2: float, lon2: float, unit: DistanceUnit | str = DistanceUnit.KILOMETERS
) -> float:
    """Spherical law of cosines.

    Loses precision for very small distances (acos near 1); prefer `haversine`
    when sub-meter accuracy matters.
    """
    radius = parse_unit(unit).earth_radius
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dlmb = math.radians(lon2 - lon1)
    cos_c = math.sin(phi1) * math.sin(phi2) + math.cos(phi1) * math.cos(phi2) * math.cos(dlmb)
    return radius * math.acos(min(1.0, max(-1.0, cos_c)))


_ALGORITHMS = {
    DistanceAlgorithm.HAVERSINE: haversine,
    DistanceAlgorithm.VINCENTY: vincenty,
    DistanceAlgorithm.SPHERICAL_LAW: spherical_law,
}


def calculate_distance(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
    unit: DistanceUnit | str = DistanceUnit.KILOMETERS,
    algorithm: DistanceAlgorithm | str = DistanceAlgorithm.HAVERSINE,
) -> float:
    """Distance between two points using the named algorithm (haversine by default)."""
    return _ALGORITHMS[parse_algorithm(algorithm)](lat1, lon1, lat2, lon2, parse_unit(unit))


def bounding_box(center: GeoPoint, radius: float, unit: DistanceUnit | str = DistanceUnit.KILOMETERS) -> BoundingBox:
    """Lat/lon envelope around `center` covering at least `radius`.

    The longitude delta is widened by 1/cos(lat). When the latitude range reaches
    a pole, points across the pole can sit at any longitude, so the box spans all
    longitudes. A box that runs past +/-180 wraps (see `BoundingBox`). The
    envelope is a pre-filter only; exact distance decides membership.
    """
    if radius <= 0:
        raise InvalidInputError("radius must be > 0")
    u = parse_unit(unit)
    lat_delta = math.degrees(radius / u.earth_radius)
    min_lat = center.lat - lat_delta
    max_lat = center.lat + lat_delta

    if min_lat <= -90.0 or max_lat >= 90.0:
        return BoundingBox(max(-90.0, min_lat), min(90.0, max_lat), -180.0, 180.0)

    lon_delta = lat_delta / math.cos(math.radians(center.lat))
    if lon_delta >= 180.0:
        return BoundingBox(min_lat, max_lat, -180.0, 180.0)

    min_lon = center.lon - lon_delta
    max_lon = center.lon + lon_delta
    if min_lon < -180.0:
        min_lon += 360.0
    elif max_lon > 180.0:
        max_lon -= 360.0
    return BoundingBox(min_lat, max_lat, min_lon, max_lon)


def midpoint(lat1: float, lon1: float, lat2: float, lon2: float) -> GeoPoint:
    """Spherical midpoint of the great-circle segment between two points."""
    phi1, lmb1 = math.radians(lat1), math.radians(lon1)
    phi2 = math.radians(lat2)
    dlmb = math.radians(lon2 - lon1)

    bx = math.cos(phi2) * math.cos(dlmb)
    by = math.cos(phi2) * math.sin(dlmb)
    phi_m = math.atan2(math.sin(phi1) + math.sin(phi2), math.sqrt((math.cos(phi1) + bx) ** 2 + by**2))
    lmb_m = lmb1 + math.atan2(by, math.cos(phi1) + bx)

    lon_m = (math.degrees(lmb_m) + 540.0) % 360.0 - 180.0
    return GeoPoint(lat=math.degrees(phi_m), lon=lon_m)


def point_in_polygon(point: GeoPoint, polygon: Sequence[tuple[float, float]]) -> bool:
    """Ray-casting test (odd crossings = inside). `polygon` is a ring of (lon, lat).

    The polygon is assumed simple; results for self-intersecting rings are undefined.
    """
    if len(polygon) < 3:
        raise InvalidInputError("polygon needs at least 3 vertices")
    x, y = point.lon, point.lat
    inside = False
    j = len(polygon) - 1
    for i in range(len(polygon)):
        xi, yi = polygon[i][0], polygon[i][1]
        xj, yj = polygon[j][0], polygon[j][1]
        if (yi > y) != (yj > y) and x < (xj - xi) * (y - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside


def decimal_to_dms(decimal: float) -> DMS:
    negative = decimal < 0
    value = abs(decimal)
    degrees = int(value)
    minutes = int((value - degrees) * 60)
    seconds = (value - degrees - minutes / 60) * 3600
    return DMS(degrees=degrees, minutes=minutes, seconds=seconds, negative=negative)


def dms_to_decimal(degrees: int, minutes: int, seconds: float, negative: bool = False) -> float:
    value = abs(degrees) + minutes / 60 + seconds / 3600
    return -value if negative or degrees < 0 else value
