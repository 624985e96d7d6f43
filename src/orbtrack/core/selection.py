"""Object selection: detail lookup by id and nearest object to a map position."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import timedelta

import numpy as np
from numpy.typing import NDArray
from scipy.spatial import cKDTree

from orbtrack.core.catalog import CatalogSlot
from orbtrack.core.frames import GeodeticPoint
from orbtrack.core.scheduler import ObjectStatus, TrackingSnapshot
from orbtrack.core.tle import ElementRecord

logger = logging.getLogger(__name__)


class UnknownObject(KeyError):
    """The requested catalog id is not in the current catalog."""

    def __init__(self, catalog_id: int) -> None:
        self.catalog_id = catalog_id
        super().__init__(catalog_id)

    def __str__(self) -> str:
        return f"NORAD {self.catalog_id} is not in the catalog"


@dataclass(frozen=True)
class ObjectDetail:
    """Everything shown for a selected object.

    Position fields are None until the object has propagated at least once.

    Attributes:
        record: Current element set.
        status: Status after the latest tick.
        position_km: Last good TEME position.
        velocity_km_s: Last good TEME velocity.
        speed_km_s: Magnitude of the velocity.
        altitude_km: Height above the WGS-84 ellipsoid.
        point: Last good sub-satellite point.
        error: Failure message of the latest tick, if any.
    """

    record: ElementRecord
    status: ObjectStatus
    position_km: NDArray[np.float64] | None = None
    velocity_km_s: NDArray[np.float64] | None = None
    speed_km_s: float | None = None
    altitude_km: float | None = None
    point: GeodeticPoint | None = None
    error: str | None = None

    @property
    def catalog_id(self) -> int:
        return self.record.catalog_id

    @property
    def name(self) -> str:
        return self.record.name

    @property
    def international_designator(self) -> str:
        return self.record.international_designator

    @property
    def orbital_period(self) -> timedelta:
        return self.record.orbital_period


def select(
    slot: CatalogSlot, snapshot: TrackingSnapshot | None, catalog_id: int
) -> ObjectDetail:
    """Look up one object.

    Args:
        slot: Catalog holder; decides whether the id exists.
        snapshot: Latest tracking snapshot, or None before the first tick.
        catalog_id: NORAD catalog number.

    Returns:
        Current details of the object.

    Raises:
        UnknownObject: If ``catalog_id`` is not in the current catalog.
    """
    record = slot.get(catalog_id)
    if record is None:
        raise UnknownObject(catalog_id)

    tracked = snapshot.get(catalog_id) if snapshot is not None else None
    if tracked is None:
        return ObjectDetail(record=record, status=ObjectStatus.PENDING)

    state = tracked.state
    point = tracked.point
    return ObjectDetail(
        record=record,
        status=tracked.status,
        position_km=state.position_km if state is not None else None,
        velocity_km_s=state.velocity_km_s if state is not None else None,
        speed_km_s=state.speed_km_s if state is not None else None,
        altitude_km=point.altitude_km if point is not None else None,
        point=point,
        error=tracked.error,
    )


def _unit_vectors(latitudes: NDArray[np.float64], longitudes: NDArray[np.float64]) -> NDArray[np.float64]:
    lat = np.radians(latitudes)
    lon = np.radians(longitudes)
    return np.column_stack((np.cos(lat) * np.cos(lon), np.cos(lat) * np.sin(lon), np.sin(lat)))


def nearest(
    snapshot: TrackingSnapshot,
    latitude_deg: float,
    longitude_deg: float,
    max_distance_deg: float | None = None,
) -> int | None:
    """Catalog id of the object whose sub-satellite point is closest.

    Distances are great-circle angles; the search uses a k-d tree over unit
    vectors so that longitude wrap-around needs no special case.

    Args:
        snapshot: Snapshot to search.
        latitude_deg: Query latitude.
        longitude_deg: Query longitude.
        max_distance_deg: Ignore objects farther than this angle.

    Returns:
        The nearest catalog id, or None if no object qualifies.
    """
    ids = [cid for cid, obj in snapshot.objects.items() if obj.point is not None]
    if not ids:
        return None

    points = [snapshot.objects[cid].point for cid in ids]
    vectors = _unit_vectors(
        np.array([p.latitude_deg for p in points]),
        np.array([p.longitude_deg for p in points]),
    )
    tree = cKDTree(vectors)
    query = _unit_vectors(np.array([latitude_deg]), np.array([longitude_deg]))[0]

    upper = np.inf
    if max_distance_deg is not None:
        # Chord length for the angular limit
        upper = 2.0 * math.sin(math.radians(min(max_distance_deg, 180.0)) / 2.0) + 1e-12
    distance, index = tree.query(query, distance_upper_bound=upper)
    if not np.isfinite(distance):
        return None
    logger.debug("Nearest object to (%.2f, %.2f) is NORAD %d", latitude_deg, longitude_deg, ids[index])
    return ids[index]
