"""Background catalog refresh from CelesTrak."""

from __future__ import annotations

import logging
import threading
from typing import Iterable

import requests

from orbtrack.core.catalog import CatalogSlot, RefreshReport
from orbtrack.data.celestrak import CelesTrakClient, SatelliteGroup
from orbtrack.utils.constants import DEFAULT_REFRESH_INTERVAL_S

logger = logging.getLogger(__name__)


class RefreshWorker:
    """Periodically fetches element sets and publishes them to a catalog slot.

    Runs on its own thread and cadence; failed refreshes are logged and
    retried at the next interval while the current catalog stays in place.

    Args:
        client: CelesTrak client used for fetching.
        slot: Catalog slot to refresh.
        groups: Groups to fetch on every refresh.
        interval_s: Seconds between refreshes.
        remove_missing: Drop ids that are no longer in the fetched groups.
    """

    def __init__(
        self,
        client: CelesTrakClient,
        slot: CatalogSlot,
        groups: Iterable[SatelliteGroup],
        interval_s: float = DEFAULT_REFRESH_INTERVAL_S,
        remove_missing: bool = False,
    ) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        self._client = client
        self._slot = slot
        self.groups = tuple(groups)
        self.interval_s = interval_s
        self.remove_missing = remove_missing
        self.last_report: RefreshReport | None = None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def refresh_once(self) -> RefreshReport | None:
        """Fetch all groups and refresh the slot.

        Returns:
            The refresh report, or None if fetching failed.
        """
        try:
            result = self._client.fetch_catalog(self.groups)
        except (requests.RequestException, ValueError, OSError) as e:
            logger.error("Catalog refresh failed: %s", e)
            return None

        remove = None
        if self.remove_missing:
            # Ids present in the source but unparseable keep their last good record
            fetched = {record.catalog_id for record in result.records}
            fetched |= {e.catalog_id for _, e in result.errors if e.catalog_id is not None}
            remove = self._slot.all_ids() - fetched
        report = self._slot.refresh(result.records, remove)
        report.errors = list(result.errors)
        self.last_report = report
        return report

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="orbtrack-refresh", daemon=True)
        self._thread.start()
        logger.info(
            "Refresh worker started for %d groups (every %.0f s)", len(self.groups), self.interval_s
        )

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._thread = None
        logger.info("Refresh worker stopped")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.refresh_once()
            except Exception:
                logger.exception("Catalog refresh raised unexpectedly")
            self._stop_event.wait(self.interval_s)
