"""Promotion engine: the per-(release, environment) state machine.

States run ``proposed -> gate_unit -> gate_integration -> gate_smoke ->
canary -> full -> superseded``, with ``rolled_back`` reachable from
``canary`` and ``full`` and ``cancelled`` from the pre-deploy states.

Concurrency policy:

- Every transition holds the environment's lock from the
  ``EnvironmentRegistry`` for its own duration only. Transitions for the
  same environment queue behind each other; different environments never
  contend.
- An environment has at most one active promotion (pre-deploy and not
  halted, or in canary). A promotion request for a different release while
  one is active is rejected with ``PromotionInProgress``; repeating the
  request for the active release returns its record.
- Binding changes are compare-and-swap writes, so a binding that moved
  underneath a transition raises ``StaleEnvironmentState``.
- Gate requests go to the ``GateRunner`` after the lock is released.

Gate failures and timeouts halt a promotion in place. They never touch the
environment binding and never roll back a deployed release; rollback is
always an explicit call.
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import datetime
from typing import Any

from lockstep.config import LockstepConfig
from lockstep.core.promotion.gates import GateRunner, NullGateRunner
from lockstep.core.promotion.models import (
    PASSED_STATE,
    PRE_DEPLOY_STATES,
    REACHED_FULL_STATES,
    Environment,
    Gate,
    GateResult,
    PromotionRecord,
    PromotionState,
    RollbackResult,
    next_gate,
)
from lockstep.core.promotion.registry import EnvironmentRegistry
from lockstep.core.store.audit import AuditLog
from lockstep.core.store.backend import DocumentStore
from lockstep.core.store.releases import ReleaseStore
from lockstep.core.timeutil import Clock, utcnow
from lockstep.exceptions import (
    ConfirmationRejected,
    InvalidTransition,
    NotFound,
    PromotionInProgress,
    StaleEnvironmentState,
    UpstreamNotPromoted,
)

logger = logging.getLogger(__name__)

_COLLECTION = "promotions"


class PromotionEngine:
    """Drives releases through gates, canary and full rollout.

    Args:
        registry: Environment bindings and locks.
        releases: Release lookup.
        store: Document store holding promotion records.
        audit: Audit trail.
        config: Environments, canary and gate settings.
        gate_runner: Collaborator that starts external gates.
        clock: Time source.
    """

    def __init__(
        self,
        registry: EnvironmentRegistry,
        releases: ReleaseStore,
        store: DocumentStore,
        audit: AuditLog,
        config: LockstepConfig | None = None,
        gate_runner: GateRunner | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._registry = registry
        self._releases = releases
        self._store = store
        self._audit = audit
        self._config = config or LockstepConfig()
        self._gate_runner = gate_runner or NullGateRunner()
        self._clock = clock
        for name in self._config.environments:
            self._registry.register(name)

    @property
    def config(self) -> LockstepConfig:
        return self._config

    @property
    def audit(self) -> AuditLog:
        return self._audit

    @property
    def releases(self) -> ReleaseStore:
        return self._releases

    # -- Queries ------------------------------------------------------------

    def status(self, environment: str) -> Environment:
        """Return the current binding of *environment*."""
        return self._registry.get(environment)

    def record(self, release_id: str, environment: str) -> PromotionRecord:
        """Return the promotion record of *release_id* in *environment*.

        Raises:
            NotFound: If the release was never promoted there.
        """
        record = self._load(release_id, environment)
        if record is None:
            raise NotFound(
                f"No promotion of {release_id!r} in {environment!r}"
            )
        return record

    def records(self, environment: str | None = None) -> list[PromotionRecord]:
        """Return promotion records, oldest first."""
        records = [
            PromotionRecord.from_dict(data)
            for data in (
                self._store.read(_COLLECTION, key)
                for key in self._store.keys(_COLLECTION)
            )
            if data is not None
        ]
        if environment is not None:
            records = [r for r in records if r.environment == environment]
        records.sort(key=lambda r: (r.created_at, r.environment, r.release_id))
        return records

    def active(self, environment: str) -> PromotionRecord | None:
        """Return the promotion holding *environment*'s slot, if any."""
        for record in self.records(environment):
            if record.is_active:
                return record
        return None

    # -- Promotion ----------------------------------------------------------

    def promote(
        self,
        release_id: str,
        environment: str,
        requested_by: str,
        canary: bool | None = None,
    ) -> PromotionRecord:
        """Start promoting *release_id* into *environment*.

        Args:
            canary: Deploy through a canary step. None uses the configured
                default for the environment.

        Returns:
            The ``proposed`` record, or the existing record when this
            release is already being promoted or fully deployed there.

        Raises:
            NotFound: Unknown release or environment.
            PromotionInProgress: Another release holds the environment.
            UpstreamNotPromoted: The release has not reached full rollout
                in the environment this one requires.
        """
        settings = self._config.environment(environment)
        release = self._releases.get(release_id)
        use_canary = (
            self._config.canary_enabled_for(environment) if canary is None else canary
        )

        with self._registry.lock(environment):
            active = self.active(environment)
            if active is not None:
                if active.release_id == release_id:
                    return active
                raise PromotionInProgress(
                    f"{environment!r} is promoting {active.release_id!r} "
                    f"({active.state.value}); cannot start {release_id!r}"
                )
            if settings.requires is not None:
                self._check_upstream(release_id, settings.requires)

            existing = self._load(release_id, environment)
            env = self._registry.get(environment)
            if (
                existing is not None
                and existing.state is PromotionState.FULL
                and env.current_release == release_id
            ):
                return existing

            now = self._clock()
            record = PromotionRecord(
                release_id=release_id,
                environment=environment,
                state=PromotionState.PROPOSED,
                requested_by=requested_by,
                canary=use_canary,
                pending_gate=Gate.UNIT,
                gate_requested_at=now,
                created_at=now,
                updated_at=now,
            )
            self._write(record)
            self._audit.record(
                "promotion.proposed",
                record.key,
                release_id=release_id,
                environment=environment,
                requested_by=requested_by,
                canary=use_canary,
            )
            self._record_gate_request(record, Gate.UNIT)
            logger.info(
                "Promotion of %s into %s proposed by %s", release_id, environment, requested_by
            )

        self._gate_runner.request_gate(release, environment, Gate.UNIT)
        return record

    def signal_gate(
        self,
        release_id: str,
        environment: str,
        gate: Gate | str,
        result: GateResult | str,
    ) -> PromotionRecord:
        """Apply a gate outcome posted by an external collaborator.

        A pass advances one state and requests the next gate; after the
        smoke gate the release is deployed. A fail or timeout halts the
        promotion where it is.

        Raises:
            NotFound: No promotion of this release in this environment.
            InvalidTransition: The promotion is not waiting for *gate*.
        """
        gate = Gate(gate)
        result = GateResult(result)
        follow_up: Gate | None = None

        with self._registry.lock(environment):
            record = self.record(release_id, environment)
            if record.pending_gate is not gate:
                waiting = record.pending_gate.value if record.pending_gate else "nothing"
                raise InvalidTransition(
                    f"{release_id!r} in {environment!r} is waiting for {waiting}, "
                    f"not gate {gate.value!r} (state {record.state.value})"
                )
            self._audit.record(
                "gate.result",
                record.key,
                release_id=release_id,
                environment=environment,
                gate=gate.value,
                result=result.value,
            )

            if result is not GateResult.PASS:
                record = self._update(
                    record,
                    pending_gate=None,
                    gate_requested_at=None,
                    failed_gate=gate,
                    failure=result,
                )
                self._audit.record(
                    "promotion.halted",
                    record.key,
                    release_id=release_id,
                    environment=environment,
                    gate=gate.value,
                    result=result.value,
                    state=record.state.value,
                )
                logger.warning(
                    "Promotion of %s into %s halted: gate %s %s",
                    release_id, environment, gate.value, result.value,
                )
                return record

            follow_up = next_gate(gate)
            # The last gate stays pending until the deploy write lands, so a
            # stale binding can be retried by repeating the signal.
            record = self._update(
                record,
                state=PASSED_STATE[gate],
                pending_gate=follow_up or gate,
                gate_requested_at=(
                    self._clock() if follow_up else record.gate_requested_at
                ),
            )
            if follow_up is None:
                record = self._deploy(record)
            else:
                self._record_gate_request(record, follow_up)

        if follow_up is not None:
            self._gate_runner.request_gate(
                self._releases.get(release_id), environment, follow_up
            )
        return record

    def confirm(
        self,
        release_id: str,
        environment: str,
        method: str,
        confirmed_by: str = "",
    ) -> PromotionRecord:
        """Complete a canary: traffic to 100 % and the release goes full.

        Raises:
            ConfirmationRejected: *method* is not accepted for the
                environment's risk tier.
            InvalidTransition: The release is not in canary.
        """
        settings = self._config.environment(environment)
        if method not in settings.approval_methods:
            raise ConfirmationRejected(
                f"{environment!r} ({settings.risk_tier} risk) accepts "
                f"{sorted(settings.approval_methods)}, not {method!r}"
            )

        with self._registry.lock(environment):
            record = self.record(release_id, environment)
            env = self._require_canary(record)
            self._registry.compare_and_swap(
                environment,
                env.sequence,
                traffic_split=100,
                retained_release=None,
                retained_lock=None,
                retained_rolled_back=False,
            )
            self._supersede(environment, env.previous_release)
            return self._update(
                record,
                details={"method": method, "confirmed_by": confirmed_by},
                state=PromotionState.FULL,
                canary_percent=None,
            )

    def report_canary_failure(
        self, release_id: str, environment: str, reason: str = ""
    ) -> RollbackResult:
        """Abort a canary: the previous full release takes all traffic again.

        Raises:
            InvalidTransition: The release is not in canary.
        """
        with self._registry.lock(environment):
            record = self.record(release_id, environment)
            env = self._require_canary(record)
            return self._abort_canary(record, env, reason or "canary failure")

    def rollback(self, environment: str, requested_by: str = "") -> RollbackResult:
        """Return *environment* to its previous full release.

        From canary this is a canary abort. From full it swaps current and
        previous in one write. Rolling back an environment that is already
        rolled back, or that has no previous release, changes nothing and
        returns ``no_op=True``.
        """
        self._config.environment(environment)
        with self._registry.lock(environment):
            env = self._registry.get(environment)
            if env.in_canary:
                record = self._load(env.current_release, environment)
                if record is not None and record.state is PromotionState.CANARY:
                    return self._abort_canary(
                        record, env, f"rollback requested by {requested_by or 'operator'}"
                    )
            if env.rolled_back:
                return self._no_op(env, "already rolled back", requested_by)
            if env.previous_release is None:
                return self._no_op(env, "no previous release", requested_by)

            updated = self._registry.compare_and_swap(
                environment,
                env.sequence,
                current_release=env.previous_release,
                current_lock=env.previous_lock,
                previous_release=env.current_release,
                previous_lock=env.current_lock,
                traffic_split=100,
                rolled_back=True,
            )
            details = {"requested_by": requested_by}
            undone = self._load(env.current_release, environment)
            if undone is not None:
                self._update(undone, details=details, state=PromotionState.ROLLED_BACK)
            restored = self._load(env.previous_release, environment)
            if restored is not None and restored.state is not PromotionState.FULL:
                self._update(restored, details=details, state=PromotionState.FULL)
            logger.info(
                "Rolled back %s from %s to %s",
                environment, env.current_release, env.previous_release,
            )
            return RollbackResult(updated)

    def cancel(
        self, release_id: str, environment: str, requested_by: str = ""
    ) -> PromotionRecord:
        """Cancel a promotion that has not deployed yet.

        Raises:
            InvalidTransition: The release is already deployed; use rollback.
        """
        with self._registry.lock(environment):
            record = self.record(release_id, environment)
            if record.state not in PRE_DEPLOY_STATES:
                raise InvalidTransition(
                    f"Cannot cancel {release_id!r} in {environment!r} from "
                    f"{record.state.value}; use rollback"
                )
            return self._update(
                record,
                details={"requested_by": requested_by},
                state=PromotionState.CANCELLED,
                pending_gate=None,
                gate_requested_at=None,
            )

    def expire_gates(self, now: datetime | None = None) -> list[PromotionRecord]:
        """Time out every pending gate past its deadline.

        Returns:
            The records halted by this call.
        """
        now = now or self._clock()
        halted: list[PromotionRecord] = []
        for record in self.records():
            if record.pending_gate is None or record.gate_requested_at is None:
                continue
            deadline = record.gate_requested_at + self._config.gates.timeout(
                record.pending_gate.value
            )
            if now < deadline:
                continue
            try:
                halted.append(
                    self.signal_gate(
                        record.release_id,
                        record.environment,
                        record.pending_gate,
                        GateResult.TIMEOUT,
                    )
                )
            except InvalidTransition:
                logger.debug("Gate of %s resolved before it timed out", record.key)
        return halted

    # -- Internals ----------------------------------------------------------

    def _deploy(self, record: PromotionRecord) -> PromotionRecord:
        release = self._releases.get(record.release_id)
        env = self._registry.get(record.environment)
        cleared: dict[str, Any] = {"pending_gate": None, "gate_requested_at": None}

        if env.current_release == release.id:
            return self._update(record, state=PromotionState.FULL, **cleared)

        if record.canary and env.current_release is not None:
            percent = self._config.canary.percent
            self._registry.compare_and_swap(
                env.name,
                env.sequence,
                current_release=release.id,
                current_lock=release.lock_hash,
                previous_release=env.current_release,
                previous_lock=env.current_lock,
                retained_release=env.previous_release,
                retained_lock=env.previous_lock,
                traffic_split=percent,
                rolled_back=False,
                retained_rolled_back=env.rolled_back,
            )
            return self._update(
                record, state=PromotionState.CANARY, canary_percent=percent, **cleared
            )

        self._registry.compare_and_swap(
            env.name,
            env.sequence,
            current_release=release.id,
            current_lock=release.lock_hash,
            previous_release=env.current_release,
            previous_lock=env.current_lock,
            retained_release=None,
            retained_lock=None,
            traffic_split=100,
            rolled_back=False,
            retained_rolled_back=False,
        )
        self._supersede(env.name, env.current_release)
        return self._update(record, state=PromotionState.FULL, **cleared)

    def _abort_canary(
        self, record: PromotionRecord, env: Environment, reason: str
    ) -> RollbackResult:
        updated = self._registry.compare_and_swap(
            env.name,
            env.sequence,
            current_release=env.previous_release,
            current_lock=env.previous_lock,
            previous_release=env.retained_release,
            previous_lock=env.retained_lock,
            retained_release=None,
            retained_lock=None,
            traffic_split=100,
            rolled_back=env.retained_rolled_back,
            retained_rolled_back=False,
        )
        self._update(
            record,
            details={"reason": reason},
            state=PromotionState.ROLLED_BACK,
            canary_percent=None,
        )
        logger.warning(
            "Canary of %s in %s aborted (%s)", record.release_id, env.name, reason
        )
        return RollbackResult(updated, reason="canary_abort")

    def _no_op(self, env: Environment, reason: str, requested_by: str) -> RollbackResult:
        self._audit.record(
            "rollback.noop",
            env.name,
            reason=reason,
            requested_by=requested_by,
            current_release=env.current_release,
        )
        logger.info("Rollback of %s is a no-op: %s", env.name, reason)
        return RollbackResult(env, no_op=True, reason=reason)

    def _require_canary(self, record: PromotionRecord) -> Environment:
        if record.state is not PromotionState.CANARY:
            raise InvalidTransition(
                f"{record.release_id!r} in {record.environment!r} is "
                f"{record.state.value}, not canary"
            )
        env = self._registry.get(record.environment)
        if env.current_release != record.release_id or not env.in_canary:
            raise StaleEnvironmentState(
                f"{record.environment!r} no longer runs {record.release_id!r} "
                f"as a canary"
            )
        return env

    def _supersede(self, environment: str, release_id: str | None) -> None:
        if release_id is None:
            return
        prior = self._load(release_id, environment)
        if prior is not None and prior.state is PromotionState.FULL:
            self._update(prior, state=PromotionState.SUPERSEDED)

    def _check_upstream(self, release_id: str, upstream: str) -> None:
        record = self._load(release_id, upstream)
        if record is None or record.state not in REACHED_FULL_STATES:
            state = record.state.value if record else "not promoted"
            raise UpstreamNotPromoted(
                f"{release_id!r} must reach full in {upstream!r} first ({state})"
            )

    def _record_gate_request(self, record: PromotionRecord, gate: Gate) -> None:
        self._audit.record(
            "gate.requested",
            record.key,
            release_id=record.release_id,
            environment=record.environment,
            gate=gate.value,
        )

    def _load(self, release_id: str, environment: str) -> PromotionRecord | None:
        data = self._store.read(_COLLECTION, f"{environment}/{release_id}")
        return PromotionRecord.from_dict(data) if data is not None else None

    def _write(self, record: PromotionRecord) -> None:
        self._store.write(_COLLECTION, record.key, record.to_dict())

    def _update(
        self,
        record: PromotionRecord,
        details: dict[str, Any] | None = None,
        **changes: Any,
    ) -> PromotionRecord:
        updated = dataclasses.replace(record, updated_at=self._clock(), **changes)
        self._write(updated)
        if updated.state is not record.state:
            self._audit.record(
                f"promotion.{updated.state.value}",
                updated.key,
                release_id=updated.release_id,
                environment=updated.environment,
                previous_state=record.state.value,
                **(details or {}),
            )
            logger.info(
                "%s in %s: %s -> %s",
                updated.release_id,
                updated.environment,
                record.state.value,
                updated.state.value,
            )
        return updated
