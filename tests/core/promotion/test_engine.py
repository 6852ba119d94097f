"""Tests for the promotion state machine.

Covers the gate sequence, halting, canary confirmation by risk tier,
canary aborts, one-step rollback and its idempotence, cancellation,
the single-active-promotion rule, upstream ordering and gate timeouts.
"""

from __future__ import annotations

from collections.abc import Callable

import pytest

from lockstep.config import LockstepConfig
from lockstep.core.promotion import (
    Gate,
    GateRunner,
    PromotionRecord,
    PromotionState,
)
from lockstep.core.store import Release
from lockstep.exceptions import (
    ConfirmationRejected,
    GateFailed,
    GateTimeout,
    InvalidTransition,
    NotFound,
    PromotionInProgress,
    UpstreamNotPromoted,
)
from lockstep.workspace import Workspace


@pytest.fixture
def r1(make_release: Callable[..., Release]) -> Release:
    return make_release("git:r1")


@pytest.fixture
def r2(make_release: Callable[..., Release]) -> Release:
    return make_release("git:r2")


@pytest.fixture
def r3(make_release: Callable[..., Release]) -> Release:
    return make_release("git:r3", ["numpy", "requests"])


class TestGates:
    """Tests for the gate sequence of a promotion."""

    def test_promote_proposes_and_requests_unit(
        self, workspace: Workspace, r1: Release
    ) -> None:
        record = workspace.engine.promote(r1.id, "dev", requested_by="alice")
        assert record.state is PromotionState.PROPOSED
        assert record.pending_gate is Gate.UNIT
        assert record.requested_by == "alice"
        assert workspace.engine.active("dev") == record
        kinds = [e.kind for e in workspace.audit.query(subject=record.key)]
        assert kinds == ["promotion.proposed", "gate.requested"]

    def test_gates_run_in_order(self, workspace: Workspace, r1: Release) -> None:
        engine = workspace.engine
        engine.promote(r1.id, "dev", requested_by="alice")
        record = engine.signal_gate(r1.id, "dev", "unit", "pass")
        assert (record.state, record.pending_gate) == (PromotionState.GATE_UNIT, Gate.INTEGRATION)
        record = engine.signal_gate(r1.id, "dev", Gate.INTEGRATION, "pass")
        assert (record.state, record.pending_gate) == (
            PromotionState.GATE_INTEGRATION, Gate.SMOKE,
        )
        record = engine.signal_gate(r1.id, "dev", "smoke", "pass")
        assert record.state is PromotionState.FULL
        assert record.pending_gate is None

    def test_first_deploy_skips_canary(
        self, workspace: Workspace, r1: Release, deploy: Callable[..., PromotionRecord]
    ) -> None:
        record = deploy(r1.id, ["dev"])
        assert record.state is PromotionState.FULL
        env = workspace.engine.status("dev")
        assert env.current_release == r1.id
        assert env.current_lock == r1.lock_hash
        assert env.previous_release is None
        assert env.traffic_split == 100
        assert env.sequence == 1

    def test_out_of_order_gate_is_rejected(self, workspace: Workspace, r1: Release) -> None:
        workspace.engine.promote(r1.id, "dev", requested_by="alice")
        with pytest.raises(InvalidTransition, match="waiting for unit"):
            workspace.engine.signal_gate(r1.id, "dev", "smoke", "pass")

    def test_signal_for_unknown_promotion(self, workspace: Workspace, r1: Release) -> None:
        with pytest.raises(NotFound):
            workspace.engine.signal_gate(r1.id, "dev", "unit", "pass")

    def test_failed_gate_halts_in_place(self, workspace: Workspace, r1: Release) -> None:
        engine = workspace.engine
        engine.promote(r1.id, "dev", requested_by="alice")
        engine.signal_gate(r1.id, "dev", "unit", "pass")
        record = engine.signal_gate(r1.id, "dev", "integration", "fail")
        assert record.state is PromotionState.GATE_UNIT
        assert record.halted
        assert record.failed_gate is Gate.INTEGRATION
        assert record.pending_gate is None
        assert engine.active("dev") is None
        assert engine.status("dev").sequence == 0
        with pytest.raises(GateFailed) as excinfo:
            record.raise_for_halt()
        assert excinfo.value.gate == "integration"
        assert len(workspace.audit.query(kind="promotion.halted")) == 1

    def test_halted_promotion_takes_no_more_signals(
        self, workspace: Workspace, r1: Release
    ) -> None:
        workspace.engine.promote(r1.id, "dev", requested_by="alice")
        workspace.engine.signal_gate(r1.id, "dev", "unit", "fail")
        with pytest.raises(InvalidTransition):
            workspace.engine.signal_gate(r1.id, "dev", "unit", "pass")

    def test_timeout_result(self, workspace: Workspace, r1: Release) -> None:
        workspace.engine.promote(r1.id, "dev", requested_by="alice")
        record = workspace.engine.signal_gate(r1.id, "dev", "unit", "timeout")
        assert record.state is PromotionState.PROPOSED
        with pytest.raises(GateTimeout):
            record.raise_for_halt()

    def test_halted_release_can_be_promoted_again(
        self, workspace: Workspace, r1: Release
    ) -> None:
        workspace.engine.promote(r1.id, "dev", requested_by="alice")
        workspace.engine.signal_gate(r1.id, "dev", "unit", "fail")
        record = workspace.engine.promote(r1.id, "dev", requested_by="alice")
        assert record.state is PromotionState.PROPOSED
        assert not record.halted
        assert record.pending_gate is Gate.UNIT


class TestGateRunner:
    """The runner is called outside the environment lock."""

    def test_synchronous_runner_drives_promotion(self, clock) -> None:
        class _Immediate(GateRunner):
            def __init__(self) -> None:
                self.calls: list[tuple[str, str, Gate]] = []
                self.workspace: Workspace | None = None

            def request_gate(self, release: Release, environment: str, gate: Gate) -> None:
                self.calls.append((release.id, environment, gate))
                self.workspace.engine.signal_gate(release.id, environment, gate, "pass")

        runner = _Immediate()
        ws = Workspace.open(None, LockstepConfig(), gate_runner=runner, clock=clock)
        runner.workspace = ws
        ws.ingest_catalog("2024.06", [("numpy", "1.24.0")])
        from lockstep.core.dependency import InMemoryIndex, RequirementSet

        index = InMemoryIndex.from_dict({"numpy": {"1.24.0": []}})
        artifact_id, _ = ws.resolve([RequirementSet.from_lines("app", ["numpy"])], index)
        release = ws.create_release("git:abc", artifact_id)

        ws.engine.promote(release.id, "dev", requested_by="ci")

        assert [c[2] for c in runner.calls] == [Gate.UNIT, Gate.INTEGRATION, Gate.SMOKE]
        assert ws.engine.record(release.id, "dev").state is PromotionState.FULL
        assert ws.engine.status("dev").current_release == release.id


class TestActivePromotion:
    """At most one active promotion per environment."""

    def test_second_release_is_rejected(
        self, workspace: Workspace, r1: Release, r2: Release
    ) -> None:
        workspace.engine.promote(r1.id, "dev", requested_by="alice")
        with pytest.raises(PromotionInProgress):
            workspace.engine.promote(r2.id, "dev", requested_by="bob")

    def test_repeated_request_returns_active_record(
        self, workspace: Workspace, r1: Release
    ) -> None:
        first = workspace.engine.promote(r1.id, "dev", requested_by="alice")
        workspace.engine.signal_gate(r1.id, "dev", "unit", "pass")
        again = workspace.engine.promote(r1.id, "dev", requested_by="alice")
        assert again.state is PromotionState.GATE_UNIT
        assert again.created_at == first.created_at

    def test_full_release_is_returned_unchanged(
        self, workspace: Workspace, r1: Release, deploy: Callable[..., PromotionRecord]
    ) -> None:
        deployed = deploy(r1.id, ["dev"])
        assert workspace.engine.promote(r1.id, "dev", requested_by="bob") == deployed

    def test_canary_holds_the_slot(
        self,
        workspace: Workspace,
        r1: Release,
        r2: Release,
        r3: Release,
        deploy: Callable[..., PromotionRecord],
        pass_gates: Callable[[str, str], PromotionRecord],
    ) -> None:
        deploy(r1.id, ["dev"])
        workspace.engine.promote(r2.id, "dev", requested_by="alice")
        assert pass_gates(r2.id, "dev").state is PromotionState.CANARY
        with pytest.raises(PromotionInProgress):
            workspace.engine.promote(r3.id, "dev", requested_by="bob")

    def test_environments_are_independent(
        self,
        workspace: Workspace,
        r1: Release,
        r2: Release,
        deploy: Callable[..., PromotionRecord],
    ) -> None:
        deploy(r1.id, ["dev"])
        workspace.engine.promote(r1.id, "staging", requested_by="alice")
        workspace.engine.promote(r2.id, "dev", requested_by="bob")
        assert workspace.engine.active("staging").release_id == r1.id
        assert workspace.engine.active("dev").release_id == r2.id


class TestUpstreamOrder:
    """A release must reach full upstream before it moves on."""

    def test_staging_requires_dev(self, workspace: Workspace, r1: Release) -> None:
        with pytest.raises(UpstreamNotPromoted, match="'dev'"):
            workspace.engine.promote(r1.id, "staging", requested_by="alice")

    def test_upstream_in_progress_is_not_enough(
        self, workspace: Workspace, r1: Release
    ) -> None:
        workspace.engine.promote(r1.id, "dev", requested_by="alice")
        with pytest.raises(UpstreamNotPromoted):
            workspace.engine.promote(r1.id, "staging", requested_by="alice")

    def test_superseded_upstream_counts(
        self,
        workspace: Workspace,
        r1: Release,
        r2: Release,
        deploy: Callable[..., PromotionRecord],
    ) -> None:
        deploy(r1.id, ["dev"])
        deploy(r2.id, ["dev"])
        assert workspace.engine.record(r1.id, "dev").state is PromotionState.SUPERSEDED
        record = workspace.engine.promote(r1.id, "staging", requested_by="alice")
        assert record.state is PromotionState.PROPOSED

    def test_unknown_environment(self, workspace: Workspace, r1: Release) -> None:
        with pytest.raises(NotFound):
            workspace.engine.promote(r1.id, "qa", requested_by="alice")

    def test_unknown_release(self, workspace: Workspace) -> None:
        with pytest.raises(NotFound):
            workspace.engine.promote("rel-missing", "dev", requested_by="alice")


class TestCanary:
    """Canary deploys, confirmation and aborts."""

    @pytest.fixture
    def canary(
        self,
        workspace: Workspace,
        r1: Release,
        r2: Release,
        deploy: Callable[..., PromotionRecord],
        pass_gates: Callable[[str, str], PromotionRecord],
    ) -> PromotionRecord:
        deploy(r1.id, ["dev"])
        workspace.engine.promote(r2.id, "dev", requested_by="alice")
        return pass_gates(r2.id, "dev")

    def test_canary_binding(
        self, workspace: Workspace, canary: PromotionRecord, r1: Release, r2: Release
    ) -> None:
        assert canary.state is PromotionState.CANARY
        assert canary.canary_percent == 5
        env = workspace.engine.status("dev")
        assert env.in_canary
        assert (env.current_release, env.previous_release) == (r2.id, r1.id)
        assert env.traffic_split == 5
        assert workspace.engine.record(r1.id, "dev").state is PromotionState.FULL

    def test_confirm_moves_to_full(
        self, workspace: Workspace, canary: PromotionRecord, r1: Release, r2: Release
    ) -> None:
        record = workspace.engine.confirm(r2.id, "dev", "health_check", "healthcheck")
        assert record.state is PromotionState.FULL
        assert record.canary_percent is None
        env = workspace.engine.status("dev")
        assert (env.current_release, env.previous_release, env.traffic_split) == (
            r2.id, r1.id, 100,
        )
        assert workspace.engine.record(r1.id, "dev").state is PromotionState.SUPERSEDED
        event = workspace.audit.query(kind="promotion.full", subject=record.key)[-1]
        assert event.details["method"] == "health_check"
        assert event.details["previous_state"] == "canary"

    def test_high_tier_requires_manual(
        self,
        workspace: Workspace,
        r1: Release,
        r2: Release,
        deploy: Callable[..., PromotionRecord],
        pass_gates: Callable[[str, str], PromotionRecord],
    ) -> None:
        deploy(r1.id)
        deploy(r2.id, ["dev", "staging"])
        workspace.engine.promote(r2.id, "prod", requested_by="alice")
        assert pass_gates(r2.id, "prod").state is PromotionState.CANARY
        with pytest.raises(ConfirmationRejected):
            workspace.engine.confirm(r2.id, "prod", "health_check")
        assert workspace.engine.status("prod").traffic_split == 5
        record = workspace.engine.confirm(r2.id, "prod", "manual", "bob")
        assert record.state is PromotionState.FULL

    def test_confirm_outside_canary(
        self, workspace: Workspace, r1: Release, deploy: Callable[..., PromotionRecord]
    ) -> None:
        deploy(r1.id, ["dev"])
        with pytest.raises(InvalidTransition, match="not canary"):
            workspace.engine.confirm(r1.id, "dev", "manual")

    def test_canary_failure_restores_previous(
        self, workspace: Workspace, canary: PromotionRecord, r1: Release, r2: Release
    ) -> None:
        result = workspace.engine.report_canary_failure(r2.id, "dev", "error rate")
        assert result.reason == "canary_abort"
        assert not result.no_op
        env = workspace.engine.status("dev")
        assert (env.current_release, env.previous_release, env.traffic_split) == (
            r1.id, None, 100,
        )
        assert not env.rolled_back
        assert workspace.engine.record(r2.id, "dev").state is PromotionState.ROLLED_BACK
        assert workspace.engine.record(r1.id, "dev").state is PromotionState.FULL
        assert workspace.engine.active("dev") is None

    def test_rollback_during_canary_aborts_it(
        self, workspace: Workspace, canary: PromotionRecord, r1: Release, r2: Release
    ) -> None:
        result = workspace.engine.rollback("dev", requested_by="oncall")
        assert result.reason == "canary_abort"
        assert result.environment.current_release == r1.id

    def test_canary_override_per_promotion(
        self,
        workspace: Workspace,
        r1: Release,
        r2: Release,
        deploy: Callable[..., PromotionRecord],
        pass_gates: Callable[[str, str], PromotionRecord],
    ) -> None:
        deploy(r1.id, ["dev"])
        workspace.engine.promote(r2.id, "dev", requested_by="alice", canary=False)
        record = pass_gates(r2.id, "dev")
        assert record.state is PromotionState.FULL
        assert workspace.engine.status("dev").traffic_split == 100


class TestRollback:
    """One-step rollback from full."""

    @pytest.fixture
    def two_deploys(
        self,
        r1: Release,
        r2: Release,
        deploy: Callable[..., PromotionRecord],
    ) -> tuple[Release, Release]:
        deploy(r1.id, ["dev"])
        deploy(r2.id, ["dev"])
        return r1, r2

    def test_rollback_swaps_current_and_previous(
        self, workspace: Workspace, two_deploys: tuple[Release, Release]
    ) -> None:
        r1, r2 = two_deploys
        before = workspace.engine.status("dev")
        result = workspace.engine.rollback("dev", requested_by="oncall")
        assert not result.no_op
        env = result.environment
        assert (env.current_release, env.current_lock) == (r1.id, r1.lock_hash)
        assert env.previous_release == r2.id
        assert env.rolled_back
        assert env.sequence == before.sequence + 1
        assert workspace.engine.record(r2.id, "dev").state is PromotionState.ROLLED_BACK
        assert workspace.engine.record(r1.id, "dev").state is PromotionState.FULL

    def test_second_rollback_is_a_noop(
        self, workspace: Workspace, two_deploys: tuple[Release, Release]
    ) -> None:
        first = workspace.engine.rollback("dev")
        second = workspace.engine.rollback("dev", requested_by="oncall")
        assert second.no_op
        assert second.reason == "already rolled back"
        assert second.environment == first.environment
        events = workspace.audit.query(kind="rollback.noop", subject="dev")
        assert events[-1].details["requested_by"] == "oncall"

    def test_rollback_without_previous(
        self, workspace: Workspace, r1: Release, deploy: Callable[..., PromotionRecord]
    ) -> None:
        deploy(r1.id, ["dev"])
        result = workspace.engine.rollback("dev")
        assert result.no_op
        assert result.reason == "no previous release"
        assert workspace.engine.status("dev").current_release == r1.id

    def test_rollback_of_empty_environment(self, workspace: Workspace) -> None:
        assert workspace.engine.rollback("dev").no_op

    def test_next_deploy_clears_rolled_back(
        self,
        workspace: Workspace,
        two_deploys: tuple[Release, Release],
        r3: Release,
        deploy: Callable[..., PromotionRecord],
    ) -> None:
        r1, _ = two_deploys
        workspace.engine.rollback("dev")
        deploy(r3.id, ["dev"])
        env = workspace.engine.status("dev")
        assert (env.current_release, env.previous_release) == (r3.id, r1.id)
        assert not env.rolled_back

    def test_aborted_canary_keeps_rolled_back(
        self,
        workspace: Workspace,
        two_deploys: tuple[Release, Release],
        r3: Release,
        pass_gates: Callable[[str, str], PromotionRecord],
    ) -> None:
        r1, r2 = two_deploys
        rolled = workspace.engine.rollback("dev").environment
        workspace.engine.promote(r3.id, "dev", requested_by="alice")
        assert pass_gates(r3.id, "dev").state is PromotionState.CANARY
        assert not workspace.engine.status("dev").rolled_back

        workspace.engine.report_canary_failure(r3.id, "dev", "error rate")
        env = workspace.engine.status("dev")
        assert (env.current_release, env.previous_release) == (r1.id, r2.id)
        assert env.rolled_back
        assert env.binding() == rolled.binding()

        again = workspace.engine.rollback("dev", requested_by="oncall")
        assert again.no_op
        assert again.reason == "already rolled back"
        assert workspace.engine.status("dev").current_release == r1.id

    def test_rollback_unknown_environment(self, workspace: Workspace) -> None:
        with pytest.raises(NotFound):
            workspace.engine.rollback("qa")


class TestCancel:
    """Cancelling promotions that have not deployed."""

    def test_cancel_frees_the_slot(
        self, workspace: Workspace, r1: Release, r2: Release
    ) -> None:
        workspace.engine.promote(r1.id, "dev", requested_by="alice")
        record = workspace.engine.cancel(r1.id, "dev", requested_by="alice")
        assert record.state is PromotionState.CANCELLED
        assert record.pending_gate is None
        assert workspace.engine.active("dev") is None
        workspace.engine.promote(r2.id, "dev", requested_by="bob")

    def test_cannot_cancel_deployed(
        self, workspace: Workspace, r1: Release, deploy: Callable[..., PromotionRecord]
    ) -> None:
        deploy(r1.id, ["dev"])
        with pytest.raises(InvalidTransition, match="use rollback"):
            workspace.engine.cancel(r1.id, "dev")


class TestGateTimeouts:
    """Pending gates time out through ``expire_gates``."""

    def test_gate_past_deadline_times_out(
        self, workspace: Workspace, r1: Release, clock
    ) -> None:
        workspace.engine.promote(r1.id, "dev", requested_by="alice")
        clock.advance(minutes=29)
        assert workspace.engine.expire_gates() == []
        clock.advance(minutes=2)
        halted = workspace.engine.expire_gates()
        assert len(halted) == 1
        assert halted[0].failure.value == "timeout"
        assert halted[0].failed_gate is Gate.UNIT
        assert workspace.engine.expire_gates() == []

    def test_deadline_restarts_per_gate(
        self, workspace: Workspace, r1: Release, clock
    ) -> None:
        workspace.engine.promote(r1.id, "dev", requested_by="alice")
        clock.advance(minutes=20)
        workspace.engine.signal_gate(r1.id, "dev", "unit", "pass")
        clock.advance(minutes=20)
        assert workspace.engine.expire_gates() == []

    def test_explicit_now(self, workspace: Workspace, r1: Release, clock) -> None:
        from datetime import timedelta

        workspace.engine.promote(r1.id, "dev", requested_by="alice")
        later = clock.now + timedelta(hours=1)
        assert [r.release_id for r in workspace.engine.expire_gates(now=later)] == [r1.id]


class TestRecords:
    """Queries over promotion records."""

    def test_records_per_environment(
        self, workspace: Workspace, r1: Release, deploy: Callable[..., PromotionRecord]
    ) -> None:
        deploy(r1.id, ["dev", "staging"])
        assert [r.environment for r in workspace.engine.records()] == ["dev", "staging"]
        assert len(workspace.engine.records("staging")) == 1

    def test_unknown_record(self, workspace: Workspace, r1: Release) -> None:
        with pytest.raises(NotFound):
            workspace.engine.record(r1.id, "dev")

    def test_state_changes_are_audited(
        self, workspace: Workspace, r1: Release, deploy: Callable[..., PromotionRecord]
    ) -> None:
        deploy(r1.id, ["dev"])
        kinds = [e.kind for e in workspace.audit.query(kind="promotion.")]
        assert kinds == [
            "promotion.proposed",
            "promotion.gate_unit",
            "promotion.gate_integration",
            "promotion.gate_smoke",
            "promotion.full",
        ]
        assert len(workspace.audit.query(kind="environment.binding", subject="dev")) == 1
