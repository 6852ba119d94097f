"""Append-only audit trail.

Every catalog ingestion, recorded lock graph, created release, promotion
state change and environment binding change is written here with a
timestamp. The log is never rewritten; queries only filter it. Sequence
numbers are assigned under the log's store lock from the records already
written, so processes sharing a state directory never reuse one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from lockstep.core.store.backend import DocumentStore
from lockstep.core.timeutil import Clock, from_iso, utcnow

_COLLECTION = "audit"


@dataclass(frozen=True)
class AuditEvent:
    """One entry in the audit trail.

    Attributes:
        sequence: Position in the log, starting at 1.
        timestamp: When the event was recorded (UTC).
        kind: Dotted event kind, e.g. "environment.binding".
        subject: What the event is about (environment name, release id,
            artifact id or catalog revision).
        details: Event-specific JSON-safe payload.
    """

    sequence: int
    timestamp: datetime
    kind: str
    subject: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sequence": self.sequence,
            "timestamp": self.timestamp.isoformat(),
            "kind": self.kind,
            "subject": self.subject,
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuditEvent:
        return cls(
            sequence=int(data["sequence"]),
            timestamp=from_iso(data["timestamp"]),
            kind=data["kind"],
            subject=data["subject"],
            details=dict(data.get("details", {})),
        )


class AuditLog:
    """Append-only, queryable audit trail."""

    def __init__(self, store: DocumentStore, clock: Clock = utcnow) -> None:
        self._store = store
        self._clock = clock

    def record(self, kind: str, subject: str, **details: Any) -> AuditEvent:
        with self._store.lock(_COLLECTION):
            event = AuditEvent(
                sequence=self._store.count_lines(_COLLECTION) + 1,
                timestamp=self._clock(),
                kind=kind,
                subject=subject,
                details=details,
            )
            self._store.append_line(_COLLECTION, event.to_dict())
            return event

    def query(
        self,
        kind: str | None = None,
        subject: str | None = None,
        since: datetime | None = None,
    ) -> list[AuditEvent]:
        """Return matching events in log order.

        Args:
            kind: Exact kind, or a prefix ending in "." (``"promotion."``).
            subject: Exact subject.
            since: Only events at or after this moment.
        """
        events = [AuditEvent.from_dict(d) for d in self._store.read_lines(_COLLECTION)]
        out: list[AuditEvent] = []
        for event in events:
            if kind is not None:
                if kind.endswith("."):
                    if not event.kind.startswith(kind):
                        continue
                elif event.kind != kind:
                    continue
            if subject is not None and event.subject != subject:
                continue
            if since is not None and event.timestamp < since:
                continue
            out.append(event)
        return out
