"""Environment registry: bindings written by compare-and-swap.

Each environment's binding lives in one JSON document, so a reader always
sees a complete binding (release, lock and traffic split together). Writes
go through ``compare_and_swap``: the persisted record is re-read, its
``sequence`` compared with the one the caller based its change on, and the
new record written atomically with ``sequence + 1``. A mismatch raises
``StaleEnvironmentState``.

The re-read, check and write happen under the binding document's store lock,
which is a file lock when the store has a state directory, so two processes
sharing that directory cannot both write the same sequence.

The registry also hands out one transition lock per environment, likewise
shared across processes. The promotion engine holds it for the duration of
a single transition.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterable
from typing import Any

from lockstep.core.promotion.models import Environment
from lockstep.core.store.audit import AuditLog
from lockstep.core.store.backend import DocumentLock, DocumentStore
from lockstep.core.timeutil import Clock, utcnow
from lockstep.exceptions import NotFound, StaleEnvironmentState

logger = logging.getLogger(__name__)

_COLLECTION = "environments"
_TRANSITIONS = "transitions"

_BINDING_FIELDS = frozenset(
    f.name for f in dataclasses.fields(Environment)
) - {"name", "sequence", "updated_at"}


class EnvironmentRegistry:
    """Persistent environment bindings plus per-environment locks."""

    def __init__(
        self,
        store: DocumentStore,
        audit: AuditLog,
        names: Iterable[str] = (),
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._audit = audit
        self._clock = clock
        for name in names:
            self.register(name)

    def register(self, name: str) -> Environment:
        """Create an empty environment if it does not exist yet."""
        with self._store.lock(_COLLECTION, name):
            data = self._store.read(_COLLECTION, name)
            if data is not None:
                env = Environment.from_dict(data)
            else:
                env = Environment(name=name, updated_at=self._clock())
                self._store.write(_COLLECTION, name, env.to_dict())
                logger.info("Registered environment %s", name)
            return env

    def get(self, name: str) -> Environment:
        """Return the persisted binding of *name*.

        Raises:
            NotFound: If the environment was never registered.
        """
        data = self._store.read(_COLLECTION, name)
        if data is None:
            raise NotFound(f"Unknown environment {name!r}")
        return Environment.from_dict(data)

    def names(self) -> list[str]:
        return self._store.keys(_COLLECTION)

    def lock(self, name: str) -> DocumentLock:
        """Return the transition lock of *name*."""
        return self._store.lock(_TRANSITIONS, name)

    def compare_and_swap(
        self, name: str, expected_sequence: int, **changes: Any
    ) -> Environment:
        """Apply *changes* to the binding if it is still at *expected_sequence*.

        Returns:
            The new binding.

        Raises:
            NotFound: If the environment does not exist.
            StaleEnvironmentState: If the binding moved since it was read.
            StorageError: If the write failed. The old binding is intact.
        """
        unknown = set(changes) - _BINDING_FIELDS
        if unknown:
            raise TypeError(f"Not binding fields: {sorted(unknown)}")

        with self._store.lock(_COLLECTION, name):
            current = self.get(name)
            if current.sequence != expected_sequence:
                raise StaleEnvironmentState(
                    f"Environment {name!r} is at sequence {current.sequence}, "
                    f"expected {expected_sequence}"
                )
            updated = dataclasses.replace(
                current,
                sequence=current.sequence + 1,
                updated_at=self._clock(),
                **changes,
            )
            self._store.write(_COLLECTION, name, updated.to_dict())

        self._audit.record(
            "environment.binding",
            name,
            sequence=updated.sequence,
            current_release=updated.current_release,
            current_lock=updated.current_lock,
            previous_release=updated.previous_release,
            previous_lock=updated.previous_lock,
            traffic_split=updated.traffic_split,
            rolled_back=updated.rolled_back,
            moved=updated.binding() != current.binding(),
        )
        logger.info(
            "Environment %s -> current=%s previous=%s traffic=%d%% (seq %d)",
            name,
            updated.current_release,
            updated.previous_release,
            updated.traffic_split,
            updated.sequence,
        )
        return updated
