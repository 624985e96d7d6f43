"""orbtrack quickstart: parse a TLE, propagate it and print the ground point."""

import logging
from datetime import timedelta

from orbtrack import forecast_track, parse_tle, propagate, to_geodetic

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")

# ISS (ZARYA) TLE
tle_text = """
ISS (ZARYA)
1 25544U 98067A   24045.54896019  .00016717  00000-0  30093-3 0  9997
2 25544  51.6412 207.4925 0004948 290.5508 178.9792 15.49583488439592
""".strip()

# Parse it
iss = parse_tle(tle_text)[0]

print(f"Satellite: {iss.name}")
print(f"NORAD ID:  {iss.catalog_id}")
print(f"Epoch:     {iss.epoch}")
print(f"Incl:      {iss.inclination_deg:.4f}°")
print(f"Ecc:       {iss.eccentricity:.7f}")
print(f"Period:    {iss.orbital_period.total_seconds() / 60:.1f} min")
print(f"Regime:    {iss.regime.value}")

# Where is it one hour after epoch?
state = propagate(iss, iss.epoch + timedelta(hours=1))
point = to_geodetic(state)
print(f"\nAt {state.time:%Y-%m-%d %H:%M:%S} UTC")
print(f"  lat {point.latitude_deg:8.3f}°  lon {point.longitude_deg:8.3f}°  alt {point.altitude_km:7.1f} km")
print(f"  speed {state.speed_km_s:.3f} km/s")

# Next orbit, split at the antimeridian
for i, segment in enumerate(forecast_track(iss, state.time)):
    print(f"Segment {i}: {len(segment)} points, "
          f"lon {segment[0].longitude_deg:.1f}° → {segment[-1].longitude_deg:.1f}°")
