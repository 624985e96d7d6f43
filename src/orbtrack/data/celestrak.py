"""CelesTrak element set client.

Fetches current element sets in three-line TLE format from the public
CelesTrak GP endpoint, with an optional on-disk cache so that repeated
starts do not hit the network more often than the data changes.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Iterable

import requests

from orbtrack.core.tle import ParseResult, parse_batch
from orbtrack.utils.constants import DEFAULT_CACHE_MAX_AGE_S

logger = logging.getLogger(__name__)


class SatelliteGroup(Enum):
    """Preset object groups, each mapping to one CelesTrak GP query.

    The value is ``(label, query parameter, query value)``.
    """

    # Space stations
    CSS = ("CSS", "INTDES", "2021-035A")
    ISS = ("ISS", "INTDES", "1998-067A")
    # Weather
    WEATHER = ("Weather", "GROUP", "weather")
    NOAA = ("NOAA", "GROUP", "noaa")
    GOES = ("GOES", "GROUP", "goes")
    # Earth resources
    EARTH_RESOURCES = ("Earth resources", "GROUP", "resource")
    SEARCH_RESCUE = ("Search & rescue", "GROUP", "sarsat")
    DISASTER_MONITORING = ("Disaster monitoring", "GROUP", "dmc")
    # Navigation
    GPS = ("GPS Operational", "GROUP", "gps-ops")
    GLONASS = ("GLONASS Operational", "GROUP", "glo-ops")
    GALILEO = ("Galileo", "GROUP", "galileo")
    BEIDOU = ("Beidou", "GROUP", "beidou")
    # Science
    SPACE_EARTH_SCIENCE = ("Space & Earth Science", "GROUP", "science")
    GEODETIC = ("Geodetic", "GROUP", "geodetic")
    ENGINEERING = ("Engineering", "GROUP", "engineering")
    EDUCATION = ("Education", "GROUP", "education")
    # Miscellaneous
    DFH1 = ("DFH-1", "INTDES", "1970-034A")
    MILITARY = ("Military", "GROUP", "military")
    RADAR_CALIBRATION = ("Radar calibration", "GROUP", "radar")
    CUBESATS = ("CubeSats", "GROUP", "cubesat")

    @property
    def label(self) -> str:
        return self.value[0]

    @property
    def query(self) -> dict[str, str]:
        return {self.value[1]: self.value[2], "FORMAT": "tle"}

    @property
    def cache_name(self) -> str:
        return f"{self.name.lower()}.txt"

    def __str__(self) -> str:
        return self.label


@dataclass
class CelesTrakClient:
    """Client for the CelesTrak GP element set endpoint.

    Attributes:
        cache_dir: Directory for cached responses. ``None`` disables caching.
        max_age_s: Cached responses older than this are fetched again.
        timeout_s: HTTP timeout per request.
    """

    cache_dir: Path | None = None
    max_age_s: float = DEFAULT_CACHE_MAX_AGE_S
    timeout_s: float = 30.0
    _session: requests.Session = field(default_factory=requests.Session, repr=False)

    BASE_URL = "https://celestrak.org/NORAD/elements/gp.php"

    def __post_init__(self) -> None:
        if self.cache_dir is not None:
            self.cache_dir = Path(self.cache_dir)

    def _cache_path(self, group: SatelliteGroup) -> Path | None:
        if self.cache_dir is None:
            return None
        return self.cache_dir / group.cache_name

    def _read_cache(self, path: Path | None) -> str | None:
        if path is None or not path.exists():
            return None
        age = time.time() - path.stat().st_mtime
        if age > self.max_age_s:
            logger.debug("Cache %s is %.0f s old, refetching", path, age)
            return None
        return path.read_text(encoding="utf-8")

    def _write_cache(self, path: Path | None, text: str) -> None:
        if path is None:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")

    def fetch_group(self, group: SatelliteGroup) -> str:
        """Fetch the raw TLE text of one group, using the cache when fresh.

        Args:
            group: Preset group to fetch.

        Returns:
            Three-line TLE text.

        Raises:
            requests.HTTPError: If the request fails.
            ValueError: If CelesTrak answers with something that is not TLE text.
        """
        path = self._cache_path(group)
        cached = self._read_cache(path)
        if cached is not None:
            logger.debug("Using cached element sets for %s", group)
            return cached

        response = self._session.get(self.BASE_URL, params=group.query, timeout=self.timeout_s)
        response.raise_for_status()
        text = response.text

        # CelesTrak reports unknown queries as plain text with status 200
        if text.strip() and "1 " not in text:
            raise ValueError(f"CelesTrak returned no element sets for {group}: {text.strip()[:80]}")

        logger.info("Fetched %s element sets from CelesTrak (%d bytes)", group, len(text))
        self._write_cache(path, text)
        return text

    def fetch_catalog(self, groups: Iterable[SatelliteGroup]) -> ParseResult:
        """Fetch and parse several groups into one result.

        Raises:
            requests.HTTPError: If any request fails.
        """
        result = ParseResult()
        for group in groups:
            result.extend(parse_batch(self.fetch_group(group)))
        logger.debug(
            "Fetched %d element sets (%d rejected)", len(result.records), len(result.errors)
        )
        return result
