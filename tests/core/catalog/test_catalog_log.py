"""Tests for version catalogs and the append-only catalog log."""

from __future__ import annotations

import pytest

from lockstep.core.catalog import CatalogLog, VersionCatalog
from lockstep.core.store import AuditLog, DocumentStore
from lockstep.exceptions import DuplicateRevision, MalformedRequirement, NotFound


@pytest.fixture
def log(clock) -> CatalogLog:
    store = DocumentStore()
    return CatalogLog(store, AuditLog(store, clock), clock)


class TestVersionCatalog:
    """Tests for building catalogs."""

    def test_names_are_canonical_and_last_wins(self) -> None:
        catalog = VersionCatalog.from_pairs(
            "14.3", [("NumPy", "1.22.0"), ("requests", "2.28.0"), ("numpy", "1.24.0")]
        )
        assert catalog.entries == (("requests", "2.28.0"), ("numpy", "1.24.0"))
        assert catalog.version_of("NUMPY") == "1.24.0"
        assert catalog.version_of("pandas") is None
        assert len(catalog) == 2
        assert catalog.requester == "catalog:14.3"

    def test_ceilings(self) -> None:
        catalog = VersionCatalog.from_pairs("14.3", [("numpy", "1.24.0")])
        assert str(catalog.ceilings()["numpy"]) == "<=1.24.0"

    @pytest.mark.parametrize(
        ("revision", "pairs"),
        [
            ("", [("numpy", "1.24.0")]),
            ("14.3", [("", "1.24.0")]),
            ("14.3", [("numpy", "latest")]),
        ],
    )
    def test_malformed_input(self, revision: str, pairs: list[tuple[str, str]]) -> None:
        with pytest.raises(MalformedRequirement):
            VersionCatalog.from_pairs(revision, pairs)

    def test_dict_round_trip_keeps_order(self) -> None:
        catalog = VersionCatalog.from_pairs("14.3", [("zlib-ng", "2.1"), ("attrs", "23.1")])
        assert VersionCatalog.from_dict(catalog.to_dict()) == catalog


class TestCatalogLog:
    """Tests for ingestion and lookup."""

    def test_ingest_and_get(self, log: CatalogLog) -> None:
        log.ingest("14.3", [("numpy", "1.24.0")])
        assert log.get("14.3").version_of("numpy") == "1.24.0"

    def test_duplicate_revision_is_rejected(self, log: CatalogLog) -> None:
        log.ingest("14.3", [("numpy", "1.24.0")])
        with pytest.raises(DuplicateRevision):
            log.ingest("14.3", [("numpy", "1.26.0")])
        assert log.get("14.3").version_of("numpy") == "1.24.0"

    def test_unknown_revision(self, log: CatalogLog) -> None:
        with pytest.raises(NotFound):
            log.get("99.9")

    def test_latest_follows_ingestion_order(self, log: CatalogLog, clock) -> None:
        log.ingest("15.0", [("numpy", "1.26.0")])
        clock.advance(hours=1)
        log.ingest("14.3", [("numpy", "1.24.0")])
        assert log.revisions() == ["15.0", "14.3"]
        assert log.latest().revision == "14.3"

    def test_latest_without_revisions(self, log: CatalogLog) -> None:
        with pytest.raises(NotFound):
            log.latest()
