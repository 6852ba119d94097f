"""``lockstep lock`` - Inspect recorded lock artifacts.

Usage::

    lockstep lock show sha256:3f1a...
    lockstep lock show sha256:3f1a... --json
    lockstep lock diff sha256:3f1a... sha256:9b0c...
"""

from __future__ import annotations

import sys

import click

from lockstep.cli.context import with_workspace
from lockstep.cli.output import print_diff, print_error, print_lock
from lockstep.workspace import Workspace


@click.group("lock")
def lock_group() -> None:
    """Inspect lock artifacts."""


@lock_group.command("show")
@click.argument("artifact_id")
@click.option("--json", "as_json", is_flag=True, help="Print the lock graph as JSON.")
@with_workspace
def show_command(ws: Workspace, artifact_id: str, as_json: bool) -> None:
    """Show the lock graph recorded as ARTIFACT_ID.

    Exit code 1 if the stored graph fails validation.
    """
    graph = ws.artifacts.fetch(artifact_id)
    if as_json:
        click.echo(graph.to_json())
    else:
        print_lock(graph)
    errors = graph.validate(declared_hash=artifact_id)
    if errors:
        for error in errors:
            print_error(error)
        sys.exit(1)


@lock_group.command("diff")
@click.argument("old_id")
@click.argument("new_id")
@with_workspace
def diff_command(ws: Workspace, old_id: str, new_id: str) -> None:
    """Show what changes between lock artifacts OLD_ID and NEW_ID."""
    old = ws.artifacts.fetch(old_id)
    new = ws.artifacts.fetch(new_id)
    print_diff(old.diff(new))
