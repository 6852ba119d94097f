"""Lockstep CLI - layered dependency locking and environment promotion.

Entry point for the ``lockstep`` command-line tool. Registers all
subcommands under a single Click group.

Commands:
    catalog      - Ingest and show platform revisions.
    resolve      - Compile and resolve requirements into a lock artifact.
    lock         - Show and diff lock artifacts.
    release      - Create and list releases.
    promote      - Start a promotion.
    gate         - Post a gate result.
    confirm      - Confirm a canary.
    canary-fail  - Abort a canary.
    rollback     - Roll an environment back.
    cancel       - Cancel a pre-deploy promotion.
    status       - Show environments.
    expire-gates - Time out overdue gates.
    audit        - Query the audit trail.

Usage::

    lockstep catalog ingest 2024.06 platform.yaml
    lockstep resolve analytics.in --index index.yaml
    lockstep release create git:4f2a9c1 sha256:3f1a...
    lockstep promote rel-4f2a9c1e0b7d dev --by alice
    lockstep --state-dir /srv/lockstep status
"""

from __future__ import annotations

import logging
from pathlib import Path

import click

from lockstep import __version__
from lockstep.cli.audit_cmd import audit_command
from lockstep.cli.catalog_cmd import catalog_group
from lockstep.cli.context import CliState
from lockstep.cli.lock_cmd import lock_group
from lockstep.cli.promote_cmd import (
    cancel_command,
    canary_fail_command,
    confirm_command,
    expire_gates_command,
    gate_command,
    promote_command,
    rollback_command,
    status_command,
)
from lockstep.cli.release_cmd import release_group
from lockstep.cli.resolve_cmd import resolve_command


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=".lockstep",
    show_default=True,
    envvar="LOCKSTEP_STATE_DIR",
    help="Directory holding catalogs, locks, releases and environments.",
)
@click.option(
    "--config", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    envvar="LOCKSTEP_CONFIG",
    help="YAML configuration file (default: built-in settings).",
)
@click.option("--verbose", "-v", is_flag=True, help="Log progress to stderr.")
@click.pass_context
def cli(ctx: click.Context, state_dir: Path, config_path: Path | None, verbose: bool) -> None:
    """Lockstep: reproducible dependency locks, promoted safely.

    Resolve team requirements under the platform's version ceilings into
    content-addressed lock artifacts, then move releases through gated,
    canaried, reversible promotions.
    """
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = CliState(state_dir=state_dir, config_path=config_path)


# Register all subcommands
cli.add_command(catalog_group)
cli.add_command(resolve_command)
cli.add_command(lock_group)
cli.add_command(release_group)
cli.add_command(promote_command)
cli.add_command(gate_command)
cli.add_command(confirm_command)
cli.add_command(canary_fail_command)
cli.add_command(rollback_command)
cli.add_command(cancel_command)
cli.add_command(status_command)
cli.add_command(expire_gates_command)
cli.add_command(audit_command)
