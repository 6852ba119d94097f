"""Scheduled rollback drills.

A drill exercises the one-step recovery path on a non-production
environment: it rolls the environment back, then promotes the release it
just rolled back all the way to full again (canary disabled), running each
gate through a synchronous check. No new engine behaviour is involved; the
drill is only a caller of the existing transitions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from lockstep.core.promotion.engine import PromotionEngine
from lockstep.core.promotion.gates import GateCheck
from lockstep.core.promotion.models import (
    GATE_ORDER,
    GateResult,
    PromotionRecord,
    PromotionState,
    RollbackResult,
)
from lockstep.core.timeutil import Clock, utcnow
from lockstep.exceptions import DrillNotPermitted, PromotionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DrillReport:
    """Outcome of one rollback drill.

    Attributes:
        environment: The drilled environment.
        release_id: The release rolled back and then restored.
        restored_to: The release that ran while rolled back.
        rollback: Result of the rollback step.
        repromotion: Final record of the re-promotion, if it started.
        passed: True if the environment ended on ``release_id`` again.
        error: Why the drill did not pass.
    """

    environment: str
    release_id: str | None
    restored_to: str | None
    rollback: RollbackResult
    repromotion: PromotionRecord | None = None
    passed: bool = False
    error: str | None = None
    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime = field(default_factory=utcnow)


class RollbackDrill:
    """Runs rollback drills through a ``PromotionEngine``.

    Args:
        engine: The engine whose transitions are exercised.
        gate_check: Decides each gate during re-promotion.
        clock: Time source for the report.
    """

    def __init__(
        self, engine: PromotionEngine, gate_check: GateCheck, clock: Clock = utcnow
    ) -> None:
        self._engine = engine
        self._gate_check = gate_check
        self._clock = clock

    def run(self, environment: str, requested_by: str = "drill") -> DrillReport:
        """Roll *environment* back and promote the same release again.

        Raises:
            DrillNotPermitted: If *environment* is a production environment,
                or a canary is running there.
            NotFound: If *environment* is unknown.
        """
        settings = self._engine.config.environment(environment)
        if settings.production:
            raise DrillNotPermitted(
                f"Rollback drills are not allowed on production environment "
                f"{environment!r}"
            )

        started = self._clock()
        before = self._engine.status(environment)
        if before.in_canary:
            raise DrillNotPermitted(
                f"{environment!r} is running a canary of {before.current_release!r}; "
                f"confirm or abort it before drilling"
            )
        release_id = before.current_release
        result = self._engine.rollback(environment, requested_by=requested_by)

        if result.no_op:
            report = DrillReport(
                environment=environment,
                release_id=release_id,
                restored_to=None,
                rollback=result,
                error=f"nothing to roll back: {result.reason}",
                started_at=started,
                finished_at=self._clock(),
            )
            return self._finish(report)

        restored_to = result.environment.current_release
        record: PromotionRecord | None = None
        error: str | None = None
        try:
            record = self._repromote(release_id, environment, requested_by)
            record.raise_for_halt()
        except PromotionError as exc:
            error = str(exc)

        after = self._engine.status(environment)
        passed = (
            error is None
            and record is not None
            and record.state is PromotionState.FULL
            and after.current_release == release_id
        )
        if not passed and error is None:
            error = f"{environment!r} runs {after.current_release!r}, not {release_id!r}"

        report = DrillReport(
            environment=environment,
            release_id=release_id,
            restored_to=restored_to,
            rollback=result,
            repromotion=record,
            passed=passed,
            error=error,
            started_at=started,
            finished_at=self._clock(),
        )
        return self._finish(report)

    def _repromote(
        self, release_id: str, environment: str, requested_by: str
    ) -> PromotionRecord:
        record = self._engine.promote(
            release_id, environment, requested_by, canary=False
        )
        release = self._engine.releases.get(release_id)
        for gate in GATE_ORDER:
            if record.halted or record.pending_gate is not gate:
                break
            ok = self._gate_check(release, environment, gate)
            record = self._engine.signal_gate(
                release_id,
                environment,
                gate,
                GateResult.PASS if ok else GateResult.FAIL,
            )
        return record

    def _finish(self, report: DrillReport) -> DrillReport:
        self._engine.audit.record(
            "drill.completed",
            report.environment,
            release_id=report.release_id,
            restored_to=report.restored_to,
            passed=report.passed,
            error=report.error,
        )
        if report.passed:
            logger.info("Rollback drill on %s passed", report.environment)
        else:
            logger.warning(
                "Rollback drill on %s failed: %s", report.environment, report.error
            )
        return report
