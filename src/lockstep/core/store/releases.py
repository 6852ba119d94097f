"""Immutable releases: a source reference bound to a lock artifact."""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from lockstep.core.store.artifacts import LockArtifactStore
from lockstep.core.store.audit import AuditLog
from lockstep.core.store.backend import DocumentStore
from lockstep.core.timeutil import Clock, from_iso, utcnow
from lockstep.exceptions import DuplicateRelease, NotFound

logger = logging.getLogger(__name__)

_COLLECTION = "releases"


@dataclass(frozen=True)
class Release:
    """A deployable unit. Promoting it never mutates it.

    Attributes:
        id: Release identifier.
        source_ref: Version-control reference the release was built from.
        lock_hash: Artifact id of the lock graph it deploys.
        created_at: Creation time.
    """

    id: str
    source_ref: str
    lock_hash: str
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "source_ref": self.source_ref,
            "lock_hash": self.lock_hash,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Release:
        return cls(
            id=data["id"],
            source_ref=data["source_ref"],
            lock_hash=data["lock_hash"],
            created_at=from_iso(data["created_at"]),
        )


def default_release_id(source_ref: str, lock_hash: str) -> str:
    """Derive a stable id from the source ref and the lock hash."""
    digest = hashlib.sha256(f"{source_ref}\n{lock_hash}".encode("utf-8")).hexdigest()
    return f"rel-{digest[:12]}"


class ReleaseStore:
    """Append-only store of releases."""

    def __init__(
        self,
        store: DocumentStore,
        artifacts: LockArtifactStore,
        audit: AuditLog,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._artifacts = artifacts
        self._audit = audit
        self._clock = clock

    def create(
        self, source_ref: str, lock_hash: str, release_id: str | None = None
    ) -> Release:
        """Create a release, or return the identical existing one.

        Raises:
            NotFound: If *lock_hash* is not a recorded artifact.
            DuplicateRelease: If *release_id* exists with different content.
        """
        if not self._artifacts.exists(lock_hash):
            raise NotFound(f"Unknown lock artifact {lock_hash!r}")
        rid = release_id or default_release_id(source_ref, lock_hash)
        release = Release(rid, source_ref, lock_hash, self._clock())
        if not self._store.create(_COLLECTION, rid, release.to_dict()):
            existing = self.get(rid)
            if (existing.source_ref, existing.lock_hash) != (source_ref, lock_hash):
                raise DuplicateRelease(
                    f"Release {rid!r} already exists for {existing.source_ref} "
                    f"/ {existing.lock_hash}"
                )
            return existing
        self._audit.record(
            "release.created", rid, source_ref=source_ref, lock_hash=lock_hash
        )
        logger.info("Created release %s (%s, %s)", rid, source_ref, lock_hash)
        return release

    def get(self, release_id: str) -> Release:
        data = self._store.read(_COLLECTION, release_id)
        if data is None:
            raise NotFound(f"Unknown release {release_id!r}")
        return Release.from_dict(data)

    def list(self) -> list[Release]:
        releases = [self.get(key) for key in self._store.keys(_COLLECTION)]
        releases.sort(key=lambda r: (r.created_at, r.id))
        return releases
