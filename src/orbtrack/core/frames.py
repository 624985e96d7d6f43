"""Coordinate transforms: TEME inertial to Earth-fixed to geodetic."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import numpy as np
from numpy.typing import NDArray
from sgp4.api import jday

from orbtrack.utils.constants import WGS84_A_KM, WGS84_F

if TYPE_CHECKING:
    from orbtrack.core.propagation import OrbitState

logger = logging.getLogger(__name__)

TWOPI = 2.0 * math.pi
_J2000 = 2451545.0
_GEODETIC_TOLERANCE = 1.0e-12
_GEODETIC_MAX_ITERATIONS = 10


@dataclass(frozen=True)
class GeodeticPoint:
    """A sub-satellite point on the WGS-84 ellipsoid.

    Attributes:
        latitude_deg: Geodetic latitude in [-90, 90].
        longitude_deg: Longitude in (-180, 180].
        altitude_km: Height above the ellipsoid.
        time: UTC time of the point.
    """

    latitude_deg: float
    longitude_deg: float
    altitude_km: float
    time: datetime


def julian_date(when: datetime) -> tuple[float, float]:
    """Split Julian date ``(jd, fraction)`` of a UTC datetime."""
    if when.tzinfo is not None:
        when = when.astimezone(timezone.utc)
    return jday(
        when.year,
        when.month,
        when.day,
        when.hour,
        when.minute,
        when.second + when.microsecond / 1e6,
    )


def gmst_from_julian(jd: float, fraction: float = 0.0) -> float:
    """Greenwich mean sidereal angle (IAU-82) in radians, in [0, 2π)."""
    tut1 = ((jd - _J2000) + fraction) / 36525.0
    seconds = (
        -6.2e-6 * tut1 * tut1 * tut1
        + 0.093104 * tut1 * tut1
        + (876600.0 * 3600.0 + 8640184.812866) * tut1
        + 67310.54841
    )
    angle = math.fmod(math.radians(seconds) / 240.0, TWOPI)
    if angle < 0.0:
        angle += TWOPI
    return angle


def gmst(when: datetime) -> float:
    """Greenwich mean sidereal angle (radians) at a UTC datetime."""
    jd, fraction = julian_date(when)
    return gmst_from_julian(jd, fraction)


def teme_to_ecef(position_km: NDArray[np.float64], gmst_rad: float) -> NDArray[np.float64]:
    """Rotate a TEME position about Z into the Earth-fixed frame.

    Polar motion and the equation of the equinoxes are ignored.
    """
    c = math.cos(gmst_rad)
    s = math.sin(gmst_rad)
    rotation = np.array([[c, s, 0.0], [-s, c, 0.0], [0.0, 0.0, 1.0]])
    return rotation @ np.asarray(position_km, dtype=np.float64)


def normalize_longitude(longitude_deg: float) -> float:
    """Wrap a longitude into (-180, 180]."""
    lon = math.fmod(longitude_deg, 360.0)
    if lon <= -180.0:
        lon += 360.0
    elif lon > 180.0:
        lon -= 360.0
    return lon


def ecef_to_geodetic(position_km: NDArray[np.float64]) -> tuple[float, float, float]:
    """Convert an Earth-fixed position to geodetic coordinates on WGS-84.

    Uses fixed-point iteration on latitude, switching the height formula
    near the poles where ``p / cos(lat)`` loses precision.

    Args:
        position_km: [x, y, z] Earth-fixed position in km.

    Returns:
        ``(latitude_deg, longitude_deg, altitude_km)``.
    """
    x, y, z = (float(c) for c in position_km)
    e2 = WGS84_F * (2.0 - WGS84_F)
    p = math.hypot(x, y)
    lon = math.atan2(y, x)

    if p < 1.0e-9:
        lat = math.copysign(math.pi / 2.0, z) if z else 0.0
        b = WGS84_A_KM * (1.0 - WGS84_F)
        return math.degrees(lat), normalize_longitude(math.degrees(lon)), abs(z) - b

    lat = math.atan2(z, p * (1.0 - e2))
    alt = 0.0
    for _ in range(_GEODETIC_MAX_ITERATIONS):
        sin_lat = math.sin(lat)
        n = WGS84_A_KM / math.sqrt(1.0 - e2 * sin_lat * sin_lat)
        if abs(lat) < math.radians(45.0):
            alt = p / math.cos(lat) - n
        else:
            alt = z / sin_lat - n * (1.0 - e2)
        new_lat = math.atan2(z, p * (1.0 - e2 * n / (n + alt)))
        if abs(new_lat - lat) < _GEODETIC_TOLERANCE:
            lat = new_lat
            break
        lat = new_lat

    return math.degrees(lat), normalize_longitude(math.degrees(lon)), alt


def to_geodetic(state: OrbitState) -> GeodeticPoint:
    """Sub-satellite point of a propagated state."""
    ecef = teme_to_ecef(state.position_km, gmst(state.time))
    lat, lon, alt = ecef_to_geodetic(ecef)
    return GeodeticPoint(latitude_deg=lat, longitude_deg=lon, altitude_km=alt, time=state.time)
