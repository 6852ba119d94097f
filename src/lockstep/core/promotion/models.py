"""Promotion data models: gates, states, environment bindings and records.

Pure data holders. ``Environment`` is the single binding record written by
compare-and-swap; ``PromotionRecord`` is the state machine record for one
(release, environment) pair.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from lockstep.core.timeutil import from_iso, to_iso, utcnow
from lockstep.exceptions import GateFailed, GateTimeout


# ---------------------------------------------------------------------------
# Gates
# ---------------------------------------------------------------------------


class Gate(str, Enum):
    """External validation gates, in the order they run."""

    UNIT = "unit"
    INTEGRATION = "integration"
    SMOKE = "smoke"


GATE_ORDER: tuple[Gate, ...] = (Gate.UNIT, Gate.INTEGRATION, Gate.SMOKE)


def next_gate(gate: Gate) -> Gate | None:
    """Return the gate after *gate*, or None after the last one."""
    index = GATE_ORDER.index(gate)
    return GATE_ORDER[index + 1] if index + 1 < len(GATE_ORDER) else None


class GateResult(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    TIMEOUT = "timeout"


# ---------------------------------------------------------------------------
# Promotion states
# ---------------------------------------------------------------------------


class PromotionState(str, Enum):
    """State of one release in one environment.

    ``GATE_<X>`` means gate X has passed. ``ROLLED_BACK`` is reachable from
    ``CANARY`` and ``FULL``; ``CANCELLED`` only from the pre-deploy states.
    """

    PROPOSED = "proposed"
    GATE_UNIT = "gate_unit"
    GATE_INTEGRATION = "gate_integration"
    GATE_SMOKE = "gate_smoke"
    CANARY = "canary"
    FULL = "full"
    SUPERSEDED = "superseded"
    ROLLED_BACK = "rolled_back"
    CANCELLED = "cancelled"


PASSED_STATE: dict[Gate, PromotionState] = {
    Gate.UNIT: PromotionState.GATE_UNIT,
    Gate.INTEGRATION: PromotionState.GATE_INTEGRATION,
    Gate.SMOKE: PromotionState.GATE_SMOKE,
}

PRE_DEPLOY_STATES = frozenset({
    PromotionState.PROPOSED,
    PromotionState.GATE_UNIT,
    PromotionState.GATE_INTEGRATION,
    PromotionState.GATE_SMOKE,
})

# States that count as having reached full rollout, for upstream ordering.
REACHED_FULL_STATES = frozenset({PromotionState.FULL, PromotionState.SUPERSEDED})


# ---------------------------------------------------------------------------
# Environment binding
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Environment:
    """The binding of one environment: what runs there, and what ran before.

    Attributes:
        name: Environment name.
        current_release: Release receiving traffic (the canary during one).
        current_lock: Lock artifact of ``current_release``.
        previous_release: The last release that was at 100 % traffic before
            the current one. The one-step rollback target.
        previous_lock: Lock artifact of ``previous_release``.
        traffic_split: Percent of traffic on ``current_release``.
        sequence: Compare-and-swap version, bumped on every write.
        retained_release: While a canary runs, the release that sat behind
            ``previous_release``. Restored as previous on canary abort.
        retained_lock: Lock artifact of ``retained_release``.
        rolled_back: True after an operator rollback, until the next deploy.
        retained_rolled_back: While a canary runs, the ``rolled_back`` flag
            held before it. Restored on canary abort.
        updated_at: Time of the last write.
    """

    name: str
    current_release: str | None = None
    current_lock: str | None = None
    previous_release: str | None = None
    previous_lock: str | None = None
    traffic_split: int = 100
    sequence: int = 0
    retained_release: str | None = None
    retained_lock: str | None = None
    rolled_back: bool = False
    retained_rolled_back: bool = False
    updated_at: datetime | None = None

    @property
    def in_canary(self) -> bool:
        return self.current_release is not None and self.traffic_split < 100

    def binding(self) -> tuple[Any, ...]:
        """The fields that change together on a deploy or rollback."""
        return (
            self.current_release,
            self.current_lock,
            self.previous_release,
            self.previous_lock,
            self.traffic_split,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "current_release": self.current_release,
            "current_lock": self.current_lock,
            "previous_release": self.previous_release,
            "previous_lock": self.previous_lock,
            "traffic_split": self.traffic_split,
            "sequence": self.sequence,
            "retained_release": self.retained_release,
            "retained_lock": self.retained_lock,
            "rolled_back": self.rolled_back,
            "retained_rolled_back": self.retained_rolled_back,
            "updated_at": to_iso(self.updated_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Environment:
        return cls(
            name=data["name"],
            current_release=data.get("current_release"),
            current_lock=data.get("current_lock"),
            previous_release=data.get("previous_release"),
            previous_lock=data.get("previous_lock"),
            traffic_split=int(data.get("traffic_split", 100)),
            sequence=int(data.get("sequence", 0)),
            retained_release=data.get("retained_release"),
            retained_lock=data.get("retained_lock"),
            rolled_back=bool(data.get("rolled_back", False)),
            retained_rolled_back=bool(data.get("retained_rolled_back", False)),
            updated_at=from_iso(data.get("updated_at")),
        )


# ---------------------------------------------------------------------------
# Promotion record
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PromotionRecord:
    """State machine record for one (release, environment) pair.

    Attributes:
        release_id: The release being promoted.
        environment: Target environment.
        state: Current ``PromotionState``.
        requested_by: Who asked for the promotion.
        canary: Whether this promotion deploys through a canary step.
        pending_gate: Gate awaiting a signal, or None.
        gate_requested_at: When ``pending_gate`` was requested.
        canary_percent: Traffic split while in canary.
        failed_gate: The gate that halted the promotion, if any.
        failure: ``GateResult.FAIL`` or ``GateResult.TIMEOUT`` when halted.
        created_at: When the promotion was requested.
        updated_at: Time of the last transition.
    """

    release_id: str
    environment: str
    state: PromotionState
    requested_by: str
    canary: bool = True
    pending_gate: Gate | None = None
    gate_requested_at: datetime | None = None
    canary_percent: int | None = None
    failed_gate: Gate | None = None
    failure: GateResult | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def key(self) -> str:
        return f"{self.environment}/{self.release_id}"

    @property
    def halted(self) -> bool:
        return self.failure is not None

    @property
    def is_active(self) -> bool:
        """True while the record holds the environment's promotion slot."""
        if self.state is PromotionState.CANARY:
            return True
        return self.state in PRE_DEPLOY_STATES and not self.halted

    def raise_for_halt(self) -> None:
        """Raise ``GateFailed`` or ``GateTimeout`` if the promotion halted."""
        if not self.halted:
            return
        gate = self.failed_gate.value if self.failed_gate else "?"
        if self.failure is GateResult.TIMEOUT:
            raise GateTimeout(self.release_id, self.environment, gate)
        raise GateFailed(self.release_id, self.environment, gate)

    def to_dict(self) -> dict[str, Any]:
        return {
            "release_id": self.release_id,
            "environment": self.environment,
            "state": self.state.value,
            "requested_by": self.requested_by,
            "canary": self.canary,
            "pending_gate": self.pending_gate.value if self.pending_gate else None,
            "gate_requested_at": to_iso(self.gate_requested_at),
            "canary_percent": self.canary_percent,
            "failed_gate": self.failed_gate.value if self.failed_gate else None,
            "failure": self.failure.value if self.failure else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PromotionRecord:
        pending = data.get("pending_gate")
        failed = data.get("failed_gate")
        failure = data.get("failure")
        return cls(
            release_id=data["release_id"],
            environment=data["environment"],
            state=PromotionState(data["state"]),
            requested_by=data.get("requested_by", ""),
            canary=bool(data.get("canary", True)),
            pending_gate=Gate(pending) if pending else None,
            gate_requested_at=from_iso(data.get("gate_requested_at")),
            canary_percent=data.get("canary_percent"),
            failed_gate=Gate(failed) if failed else None,
            failure=GateResult(failure) if failure else None,
            created_at=from_iso(data["created_at"]),
            updated_at=from_iso(data["updated_at"]),
        )


@dataclass(frozen=True)
class RollbackResult:
    """Outcome of a rollback request.

    Attributes:
        environment: The binding after the request.
        no_op: True if nothing changed (already rolled back, or no previous
            release to return to).
        reason: Why the request was a no-op, or which path ran
            ("rollback" or "canary_abort").
    """

    environment: Environment
    no_op: bool = False
    reason: str = "rollback"
