from __future__ import annotations

"""Physical constants and default tracking parameters.

Distances in km, angles in degrees unless noted otherwise.
"""

# --- Earth ellipsoid (WGS-84), used for geodetic conversion ---
WGS84_A_KM: float = 6378.137
"""Equatorial radius of the WGS-84 ellipsoid in km."""

WGS84_F: float = 1.0 / 298.257223563
"""Flattening of the WGS-84 ellipsoid."""

EARTH_MU_KM3_S2: float = 398600.4418
"""Earth gravitational parameter (GM) in km³/s²."""

SECONDS_PER_DAY: float = 86400.0
MINUTES_PER_DAY: float = 1440.0

# --- Propagation ---
DEEP_SPACE_PERIOD_HOURS: float = 3.75
"""Orbits with a period at or above this (225 min) use the deep-space branch."""

DEFAULT_KEPLER_TOLERANCE: float = 1.0e-12
"""Residual (rad) below which the Kepler iteration is considered converged."""

DEFAULT_KEPLER_MAX_ITERATIONS: int = 10
"""Newton iterations allowed before the solve is declared non-convergent."""

# --- Tracking ---
DEFAULT_TICK_INTERVAL_S: float = 1.0
"""Seconds between scheduler ticks."""

DEFAULT_TRACK_MAX_POINTS: int = 720
"""Hard cap on stored ground-track points per object."""

DEFAULT_TRACK_SPACING_S: float = 30.0
"""Minimum time between stored ground-track points."""

DEFAULT_FORECAST_STEP_S: float = 60.0
"""Sample spacing for forward ground-track forecasts."""

# --- Refresh ---
DEFAULT_CACHE_MAX_AGE_S: float = 2 * 60 * 60
"""Cached element sets older than this are fetched again."""

DEFAULT_REFRESH_INTERVAL_S: float = 2 * 60 * 60
"""Seconds between background refreshes."""
