"""Content-addressed, append-only store of every lock graph produced."""

from __future__ import annotations

import logging

from lockstep.core.lockgraph import LockGraph
from lockstep.core.store.audit import AuditLog
from lockstep.core.store.backend import DocumentStore
from lockstep.exceptions import NotFound

logger = logging.getLogger(__name__)

_COLLECTION = "locks"


class LockArtifactStore:
    """Records lock graphs under their content hash.

    ``record`` is idempotent: recording a graph with the same pins twice
    returns the same id and keeps the first provenance. There is no update
    or delete.
    """

    def __init__(self, store: DocumentStore, audit: AuditLog) -> None:
        self._store = store
        self._audit = audit

    def record(self, graph: LockGraph) -> str:
        """Store *graph* and return its artifact id."""
        artifact_id = graph.artifact_id
        if self._store.create(_COLLECTION, artifact_id, graph.to_dict()):
            self._audit.record(
                "lock.recorded",
                artifact_id,
                packages=graph.package_count,
                platform_revision=graph.provenance.platform_revision,
                resolver_version=graph.provenance.resolver_version,
            )
            logger.info("Recorded lock artifact %s (%d packages)", artifact_id, len(graph))
        return artifact_id

    def fetch(self, artifact_id: str) -> LockGraph:
        """Return the recorded graph.

        Raises:
            NotFound: If no graph was recorded under *artifact_id*.
        """
        data = self._store.read(_COLLECTION, artifact_id)
        if data is None:
            raise NotFound(f"Unknown lock artifact {artifact_id!r}")
        return LockGraph.from_dict(data)

    def exists(self, artifact_id: str) -> bool:
        return self._store.read(_COLLECTION, artifact_id) is not None

    def ids(self) -> list[str]:
        return self._store.keys(_COLLECTION)
