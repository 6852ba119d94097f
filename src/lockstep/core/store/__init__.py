"""Persistent stores: documents, audit trail, lock artifacts and releases."""

from lockstep.core.store.backend import DocumentLock, DocumentStore
from lockstep.core.store.audit import AuditEvent, AuditLog
from lockstep.core.store.artifacts import LockArtifactStore
from lockstep.core.store.releases import Release, ReleaseStore

__all__ = [
    "AuditEvent",
    "AuditLog",
    "DocumentLock",
    "DocumentStore",
    "LockArtifactStore",
    "Release",
    "ReleaseStore",
]
