"""Tests for the catalog and its atomic refresh."""
from __future__ import annotations

import logging
import threading
from dataclasses import replace

import pytest

from orbtrack.core.catalog import Catalog, CatalogSlot
from orbtrack.core.tle import ElementRecord, parse_element_set

ISS_LINE1 = "1 25544U 98067A   24045.54896019  .00016717  00000-0  30093-3 0  9997"
ISS_LINE2 = "2 25544  51.6412 207.4925 0004948 290.5508 178.9792 15.49583488439592"

CSS_LINE1 = "1 48274U 21035A   24045.50261574  .00021540  00000-0  25163-3 0  9993"
CSS_LINE2 = "2 48274  41.4681 279.1498 0005372 149.8847 345.3740 15.62096269157015"

HST_LINE1 = "1 20580U 90037B   24045.55478014  .00001456  00000-0  73052-4 0  9990"
HST_LINE2 = "2 20580  28.4701  41.0696 0002622 348.3544 140.2428 15.09435694872912"


@pytest.fixture
def iss() -> ElementRecord:
    return parse_element_set(ISS_LINE1, ISS_LINE2, name="ISS (ZARYA)")


@pytest.fixture
def css() -> ElementRecord:
    return parse_element_set(CSS_LINE1, CSS_LINE2, name="CSS (TIANHE)")


@pytest.fixture
def hst() -> ElementRecord:
    return parse_element_set(HST_LINE1, HST_LINE2, name="HST")


class TestCatalog:
    def test_lookup(self, iss: ElementRecord, css: ElementRecord) -> None:
        catalog = Catalog([iss, css])
        assert len(catalog) == 2
        assert catalog[25544] is iss
        assert catalog.get(48274) is css
        assert catalog.get(1) is None
        assert 25544 in catalog
        assert catalog.all_ids() == frozenset({25544, 48274})

    def test_missing_key(self) -> None:
        with pytest.raises(KeyError):
            Catalog()[25544]

    def test_is_read_only(self, iss: ElementRecord) -> None:
        catalog = Catalog([iss])
        with pytest.raises(TypeError):
            catalog[1] = iss  # type: ignore[index]

    def test_later_duplicate_wins(self, iss: ElementRecord) -> None:
        newer = replace(iss, element_set_number=1000)
        assert Catalog([iss, newer])[25544] is newer

    def test_merged_leaves_original(self, iss: ElementRecord, css: ElementRecord) -> None:
        catalog = Catalog([iss], version=3)
        merged = catalog.merged([css])
        assert merged.version == 4
        assert set(merged) == {25544, 48274}
        assert set(catalog) == {25544}

    def test_merged_remove(self, iss: ElementRecord, css: ElementRecord) -> None:
        merged = Catalog([iss, css]).merged([], remove=[25544, 99999])
        assert set(merged) == {48274}


class TestCatalogSlot:
    def test_empty_start(self) -> None:
        slot = CatalogSlot()
        assert len(slot.current()) == 0
        assert slot.current().version == 0

    def test_refresh_report(self, iss: ElementRecord, css: ElementRecord, hst: ElementRecord) -> None:
        slot = CatalogSlot(Catalog([iss, css]))
        updated = replace(iss, element_set_number=1000)
        report = slot.refresh([updated, hst], remove=[48274])
        assert report.version == 1
        assert report.added == {20580}
        assert report.replaced == {25544}
        assert report.removed == {48274}
        assert slot.get(25544) is updated
        assert slot.all_ids() == frozenset({25544, 20580})

    def test_refresh_keeps_absent_ids(self, iss: ElementRecord, css: ElementRecord) -> None:
        slot = CatalogSlot(Catalog([iss]))
        slot.refresh([css])
        assert slot.all_ids() == frozenset({25544, 48274})

    def test_old_reference_is_unchanged(self, iss: ElementRecord, css: ElementRecord) -> None:
        slot = CatalogSlot(Catalog([iss]))
        before = slot.current()
        slot.refresh([css], remove=[25544])
        assert before[25544] is iss
        assert 48274 not in before
        assert slot.current() is not before

    def test_versions_increase(self, iss: ElementRecord) -> None:
        slot = CatalogSlot()
        versions = [slot.refresh([iss]).version for _ in range(3)]
        assert versions == [1, 2, 3]

    def test_refresh_text_skips_malformed(self, caplog: pytest.LogCaptureFixture) -> None:
        bad_line2 = CSS_LINE2[:-1] + "0"
        text = "\n".join(
            ["ISS (ZARYA)", ISS_LINE1, ISS_LINE2, "CSS (TIANHE)", CSS_LINE1, bad_line2, HST_LINE1, HST_LINE2]
        )
        slot = CatalogSlot()
        with caplog.at_level(logging.WARNING, logger="orbtrack.core.catalog"):
            report = slot.refresh_text(text)
        assert report.added == {25544, 20580}
        assert report.error_count == 1
        assert 48274 not in slot.current()
        assert "Skipped 1 malformed" in caplog.text

    def test_concurrent_readers_see_whole_catalogs(self, iss: ElementRecord, css: ElementRecord) -> None:
        """A reader never sees a catalog that mixes two refreshes."""
        first = replace(iss, element_set_number=1)
        slot = CatalogSlot(Catalog([first, replace(css, element_set_number=1)]))
        stop = threading.Event()
        mismatches: list[tuple[int, int]] = []

        def reader() -> None:
            while not stop.is_set():
                catalog = slot.current()
                a = catalog[25544].element_set_number
                b = catalog[48274].element_set_number
                if a != b:
                    mismatches.append((a, b))

        threads = [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        for n in range(2, 200):
            slot.refresh([replace(iss, element_set_number=n), replace(css, element_set_number=n)])
        stop.set()
        for t in threads:
            t.join()
        assert mismatches == []
