"""Promotion commands: drive releases through environments.

Usage::

    lockstep promote rel-4f2a9c1e0b7d prod --by alice
    lockstep gate rel-4f2a9c1e0b7d prod unit pass
    lockstep confirm rel-4f2a9c1e0b7d prod --method manual --by bob
    lockstep canary-fail rel-4f2a9c1e0b7d prod --reason "error rate"
    lockstep rollback prod --by alice
    lockstep cancel rel-4f2a9c1e0b7d prod
    lockstep status
    lockstep expire-gates

Exit Codes:
    0 - Transition applied (a no-op rollback also exits 0).
    1 - Halted gate, in-progress promotion, stale state or illegal
        transition.
    2 - Unknown release or environment.
"""

from __future__ import annotations

import sys

import click

from lockstep.cli.context import with_workspace
from lockstep.cli.output import (
    console,
    print_environments,
    print_error,
    print_record,
    print_rollback,
)
from lockstep.core.promotion import Gate, GateResult
from lockstep.exceptions import GateFailed
from lockstep.workspace import Workspace


@click.command("promote")
@click.argument("release_id")
@click.argument("environment")
@click.option("--by", "requested_by", default="cli", show_default=True, help="Requester.")
@click.option(
    "--canary/--no-canary",
    default=None,
    help="Force or skip the canary step (default: from config).",
)
@with_workspace
def promote_command(
    ws: Workspace,
    release_id: str,
    environment: str,
    requested_by: str,
    canary: bool | None,
) -> None:
    """Start promoting RELEASE_ID into ENVIRONMENT."""
    record = ws.engine.promote(release_id, environment, requested_by, canary=canary)
    print_record(record)


@click.command("gate")
@click.argument("release_id")
@click.argument("environment")
@click.argument("gate", type=click.Choice([g.value for g in Gate]))
@click.argument("result", type=click.Choice([r.value for r in GateResult]))
@with_workspace
def gate_command(
    ws: Workspace, release_id: str, environment: str, gate: str, result: str
) -> None:
    """Post a gate RESULT for RELEASE_ID in ENVIRONMENT.

    Exit code 1 if the result halts the promotion.
    """
    record = ws.engine.signal_gate(release_id, environment, gate, result)
    print_record(record)
    try:
        record.raise_for_halt()
    except GateFailed as exc:
        print_error(str(exc))
        sys.exit(1)


@click.command("confirm")
@click.argument("release_id")
@click.argument("environment")
@click.option(
    "--method",
    type=click.Choice(["manual", "health_check"]),
    default="manual",
    show_default=True,
    help="How the canary was approved.",
)
@click.option("--by", "confirmed_by", default="cli", show_default=True)
@with_workspace
def confirm_command(
    ws: Workspace, release_id: str, environment: str, method: str, confirmed_by: str
) -> None:
    """Confirm the canary of RELEASE_ID: move ENVIRONMENT to full traffic."""
    record = ws.engine.confirm(release_id, environment, method, confirmed_by)
    print_record(record)


@click.command("canary-fail")
@click.argument("release_id")
@click.argument("environment")
@click.option("--reason", default="", help="Why the canary failed.")
@with_workspace
def canary_fail_command(
    ws: Workspace, release_id: str, environment: str, reason: str
) -> None:
    """Report a failed canary: ENVIRONMENT returns to its previous release."""
    print_rollback(ws.engine.report_canary_failure(release_id, environment, reason))


@click.command("rollback")
@click.argument("environment")
@click.option("--by", "requested_by", default="cli", show_default=True)
@with_workspace
def rollback_command(ws: Workspace, environment: str, requested_by: str) -> None:
    """Roll ENVIRONMENT back to its previous full release."""
    print_rollback(ws.engine.rollback(environment, requested_by))


@click.command("cancel")
@click.argument("release_id")
@click.argument("environment")
@click.option("--by", "requested_by", default="cli", show_default=True)
@with_workspace
def cancel_command(
    ws: Workspace, release_id: str, environment: str, requested_by: str
) -> None:
    """Cancel a promotion that has not deployed yet."""
    print_record(ws.engine.cancel(release_id, environment, requested_by))


@click.command("status")
@click.argument("environment", required=False)
@with_workspace
def status_command(ws: Workspace, environment: str | None) -> None:
    """Show environment bindings and active promotions."""
    names = [environment] if environment else ws.registry.names()
    envs = [ws.engine.status(name) for name in names]
    print_environments(envs, {name: ws.engine.active(name) for name in names})
    if environment:
        for record in ws.engine.records(environment):
            print_record(record)


@click.command("expire-gates")
@with_workspace
def expire_gates_command(ws: Workspace) -> None:
    """Halt every promotion whose pending gate is past its timeout."""
    halted = ws.engine.expire_gates()
    if not halted:
        console.print("[dim]No gates past their deadline.[/dim]")
        return
    for record in halted:
        print_record(record)
