"""Live tracking: fetch groups from CelesTrak and print the tracker state.

Requires network access on the first run; responses are cached under
``./.orbtrack-cache`` for two hours.
"""

import logging
import time
from pathlib import Path

from orbtrack import (
    CatalogSlot,
    CelesTrakClient,
    ObjectStatus,
    RefreshWorker,
    SatelliteGroup,
    TrackingScheduler,
    nearest,
    select,
)

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

slot = CatalogSlot()
client = CelesTrakClient(cache_dir=Path(".orbtrack-cache"))
refresher = RefreshWorker(client, slot, [SatelliteGroup.ISS, SatelliteGroup.CSS, SatelliteGroup.NOAA])
refresher.refresh_once()

scheduler = TrackingScheduler(slot)
scheduler.start()
refresher.start()

try:
    for _ in range(10):
        time.sleep(1.0)
        snapshot = scheduler.latest()
        if snapshot is None:
            continue
        print(f"\nTick {snapshot.sequence} at {snapshot.time:%H:%M:%S} UTC: "
              f"{snapshot.count(ObjectStatus.PROPAGATED)}/{len(snapshot.objects)} propagated")
        if 25544 in slot.current():
            iss = select(slot, snapshot, 25544)
            if iss.point is not None:
                print(f"  ISS  lat {iss.point.latitude_deg:7.2f}°  lon {iss.point.longitude_deg:8.2f}°  "
                      f"alt {iss.altitude_km:6.1f} km  {iss.speed_km_s:.2f} km/s")
        closest = nearest(snapshot, 51.5, -0.1)
        if closest is not None:
            print(f"  Closest to London: {select(slot, snapshot, closest).name}")
finally:
    refresher.stop(timeout=5.0)
    scheduler.stop(timeout=5.0)
