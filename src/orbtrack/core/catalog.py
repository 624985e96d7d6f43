"""Element set catalog with atomic refresh.

A :class:`Catalog` is an immutable mapping from catalog id to
:class:`~orbtrack.core.tle.ElementRecord`. :class:`CatalogSlot` holds the
current catalog; a refresh builds a new catalog and publishes it with a
single reference assignment, so readers that took a reference keep a
consistent view for as long as they hold it.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from orbtrack.core.tle import ElementRecord, ParseError, parse_batch

logger = logging.getLogger(__name__)


class Catalog(Mapping[int, ElementRecord]):
    """Immutable catalog of element sets.

    Args:
        records: Element sets to index. Later duplicates of an id win.
        version: Monotonic version number, bumped on every refresh.
    """

    __slots__ = ("_records", "_ids", "version")

    def __init__(self, records: Iterable[ElementRecord] = (), version: int = 0) -> None:
        self._records: Mapping[int, ElementRecord] = MappingProxyType(
            {record.catalog_id: record for record in records}
        )
        self._ids = frozenset(self._records)
        self.version = version

    def __getitem__(self, catalog_id: int) -> ElementRecord:
        return self._records[catalog_id]

    def __iter__(self) -> Iterator[int]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, catalog_id: object) -> bool:
        return catalog_id in self._records

    def __repr__(self) -> str:
        return f"Catalog(version={self.version}, size={len(self)})"

    def get(self, catalog_id: int, default: ElementRecord | None = None) -> ElementRecord | None:
        return self._records.get(catalog_id, default)

    def all_ids(self) -> frozenset[int]:
        return self._ids

    def merged(self, batch: Iterable[ElementRecord], remove: Iterable[int] = ()) -> Catalog:
        """Return a new catalog with ``batch`` applied.

        Ids in ``batch`` replace existing entries or are added; ids absent
        from ``batch`` are kept unless listed in ``remove``.
        """
        records = dict(self._records)
        for catalog_id in remove:
            records.pop(catalog_id, None)
        for record in batch:
            records[record.catalog_id] = record
        return Catalog(records.values(), version=self.version + 1)


@dataclass
class RefreshReport:
    """Summary of one catalog refresh.

    Attributes:
        version: Version of the catalog published by the refresh.
        added: Ids not present before.
        replaced: Ids whose record was replaced.
        removed: Ids dropped by the refresh.
        errors: Parse errors from the source text, ``(line_ref, error)``.
    """

    version: int
    added: frozenset[int] = frozenset()
    replaced: frozenset[int] = frozenset()
    removed: frozenset[int] = frozenset()
    errors: list[tuple[int, ParseError]] = field(default_factory=list)

    @property
    def error_count(self) -> int:
        return len(self.errors)


class CatalogSlot:
    """Holder of the current :class:`Catalog`.

    Any number of threads may read; refreshes are serialised by a writer
    lock and published by swapping one reference.
    """

    def __init__(self, catalog: Catalog | None = None) -> None:
        self._catalog = catalog if catalog is not None else Catalog()
        self._write_lock = threading.Lock()

    def current(self) -> Catalog:
        return self._catalog

    def get(self, catalog_id: int) -> ElementRecord | None:
        return self._catalog.get(catalog_id)

    def all_ids(self) -> frozenset[int]:
        return self._catalog.all_ids()

    def refresh(
        self, batch: Iterable[ElementRecord], remove: Iterable[int] | None = None
    ) -> RefreshReport:
        """Merge a batch of records into a new catalog and publish it.

        Args:
            batch: New or updated element sets.
            remove: Ids to drop. ``None`` keeps every id not in ``batch``.

        Returns:
            What the refresh changed.
        """
        batch = list(batch)
        with self._write_lock:
            old = self._catalog
            new = old.merged(batch, remove or ())
            self._catalog = new

        incoming = {record.catalog_id for record in batch}
        report = RefreshReport(
            version=new.version,
            added=frozenset(incoming - old.all_ids()),
            replaced=frozenset(incoming & old.all_ids()),
            removed=frozenset(old.all_ids() - new.all_ids()),
        )
        logger.info(
            "Catalog refreshed to version %d: %d added, %d replaced, %d removed",
            report.version,
            len(report.added),
            len(report.replaced),
            len(report.removed),
        )
        return report

    def refresh_text(self, text: str, remove: Iterable[int] | None = None) -> RefreshReport:
        """Parse TLE text and refresh with every record that parsed.

        Malformed records are logged and reported, never published.
        """
        result = parse_batch(text)
        if result.errors:
            logger.warning("Skipped %d malformed element sets", len(result.errors))
        report = self.refresh(result.records, remove)
        report.errors = list(result.errors)
        return report
