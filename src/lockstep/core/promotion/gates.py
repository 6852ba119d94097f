"""Gate runner collaborators.

The engine never runs tests itself. When a promotion reaches a gate it asks
a ``GateRunner`` to start the external check, and later receives the
outcome through ``PromotionEngine.signal_gate``. Requests are issued after
the environment lock is released, so a slow runner never blocks other
transitions.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable

from lockstep.core.promotion.models import Gate
from lockstep.core.store.releases import Release

logger = logging.getLogger(__name__)

# Synchronous check used by drills and local runs: True means the gate passed.
GateCheck = Callable[[Release, str, Gate], bool]


class GateRunner(ABC):
    """Starts external validation gates."""

    @abstractmethod
    def request_gate(self, release: Release, environment: str, gate: Gate) -> None:
        """Ask the external collaborator to run *gate* for *release*.

        Must return promptly; the result arrives later as a gate signal.
        """


class NullGateRunner(GateRunner):
    """Records nothing and starts nothing. Signals arrive from outside."""

    def request_gate(self, release: Release, environment: str, gate: Gate) -> None:
        logger.debug(
            "Gate %s requested for %s in %s (no runner configured)",
            gate.value, release.id, environment,
        )
