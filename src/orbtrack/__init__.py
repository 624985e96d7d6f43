"""
orbtrack: near-real-time orbit tracking for Python.

Parses two-line element sets, propagates them with SGP4/SDP4, converts
positions to geographic coordinates and keeps trailing ground tracks for a
whole catalog on a fixed cadence, with periodic refresh from CelesTrak.
"""

from __future__ import annotations

__version__ = "0.1.0-dev"

from orbtrack.core.tle import ElementRecord, OrbitRegime, ParseError, ParseResult, parse_batch, parse_tle
from orbtrack.core.catalog import Catalog, CatalogSlot, RefreshReport
from orbtrack.core.propagation import (
    Decayed,
    InvalidElements,
    NonConvergent,
    OrbitState,
    PropagationError,
    propagate,
)
from orbtrack.core.frames import GeodeticPoint, to_geodetic
from orbtrack.core.ground_track import GroundTrack, forecast_track
from orbtrack.core.scheduler import (
    ObjectSnapshot,
    ObjectStatus,
    SimulationClock,
    TrackerConfig,
    TrackingScheduler,
    TrackingSnapshot,
)
from orbtrack.core.selection import ObjectDetail, UnknownObject, nearest, select
from orbtrack.data.celestrak import CelesTrakClient, SatelliteGroup
from orbtrack.data.refresh import RefreshWorker

__all__ = [
    "__version__",
    "ElementRecord",
    "OrbitRegime",
    "ParseError",
    "ParseResult",
    "parse_batch",
    "parse_tle",
    "Catalog",
    "CatalogSlot",
    "RefreshReport",
    "Decayed",
    "InvalidElements",
    "NonConvergent",
    "OrbitState",
    "PropagationError",
    "propagate",
    "GeodeticPoint",
    "to_geodetic",
    "GroundTrack",
    "forecast_track",
    "ObjectSnapshot",
    "ObjectStatus",
    "SimulationClock",
    "TrackerConfig",
    "TrackingScheduler",
    "TrackingSnapshot",
    "ObjectDetail",
    "UnknownObject",
    "nearest",
    "select",
    "CelesTrakClient",
    "SatelliteGroup",
    "RefreshWorker",
]
