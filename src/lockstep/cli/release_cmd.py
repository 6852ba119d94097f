"""``lockstep release`` - Create and list releases.

Usage::

    lockstep release create git:4f2a9c1 sha256:3f1a...
    lockstep release create git:4f2a9c1 sha256:3f1a... --id r-2024-06-01
    lockstep release list
"""

from __future__ import annotations

import click

from lockstep.cli.context import with_workspace
from lockstep.cli.output import print_releases
from lockstep.workspace import Workspace


@click.group("release")
def release_group() -> None:
    """Manage releases (source ref + lock artifact)."""


@release_group.command("create")
@click.argument("source_ref")
@click.argument("lock_hash")
@click.option("--id", "release_id", default=None, help="Release id (default: derived).")
@with_workspace
def create_command(
    ws: Workspace, source_ref: str, lock_hash: str, release_id: str | None
) -> None:
    """Bind SOURCE_REF to the recorded lock artifact LOCK_HASH."""
    release = ws.create_release(source_ref, lock_hash, release_id)
    click.echo(release.id)


@release_group.command("list")
@with_workspace
def list_command(ws: Workspace) -> None:
    """List releases, oldest first."""
    print_releases(ws.releases.list())
