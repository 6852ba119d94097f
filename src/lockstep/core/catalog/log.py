"""Append-only log of platform revisions."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from lockstep.core.catalog.models import VersionCatalog
from lockstep.core.store.audit import AuditLog
from lockstep.core.store.backend import DocumentStore
from lockstep.core.timeutil import Clock, utcnow
from lockstep.exceptions import DuplicateRevision, NotFound

logger = logging.getLogger(__name__)

_COLLECTION = "catalogs"


class CatalogLog:
    """Stores one ``VersionCatalog`` per platform revision, forever.

    There is no update or delete: widening a ceiling means ingesting a new
    revision.
    """

    def __init__(
        self, store: DocumentStore, audit: AuditLog, clock: Clock = utcnow
    ) -> None:
        self._store = store
        self._audit = audit
        self._clock = clock

    def ingest(
        self, revision: str, pairs: Iterable[tuple[str, str]]
    ) -> VersionCatalog:
        """Record a new platform revision.

        Raises:
            DuplicateRevision: If *revision* was ingested before.
            MalformedRequirement: If an entry is malformed.
        """
        catalog = VersionCatalog.from_pairs(revision, pairs, self._clock())
        if not self._store.create(_COLLECTION, catalog.revision, catalog.to_dict()):
            raise DuplicateRevision(
                f"Platform revision {catalog.revision!r} already exists"
            )
        self._audit.record(
            "catalog.ingested", catalog.revision, packages=len(catalog)
        )
        logger.info(
            "Ingested platform revision %s (%d packages)",
            catalog.revision, len(catalog),
        )
        return catalog

    def get(self, revision: str) -> VersionCatalog:
        data = self._store.read(_COLLECTION, revision)
        if data is None:
            raise NotFound(f"Unknown platform revision {revision!r}")
        return VersionCatalog.from_dict(data)

    def revisions(self) -> list[str]:
        """Return revisions in ingestion order."""
        catalogs = [self.get(key) for key in self._store.keys(_COLLECTION)]
        catalogs.sort(key=lambda c: c.created_at)
        return [c.revision for c in catalogs]

    def latest(self) -> VersionCatalog:
        revisions = self.revisions()
        if not revisions:
            raise NotFound("No platform revision has been ingested")
        return self.get(revisions[-1])
