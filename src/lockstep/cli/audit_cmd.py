"""``lockstep audit`` - Query the audit trail.

Usage::

    lockstep audit
    lockstep audit --kind promotion.
    lockstep audit --subject prod --since 2024-06-01T00:00:00+00:00 --json
"""

from __future__ import annotations

import json
import sys
from datetime import datetime

import click

from lockstep.cli.context import with_workspace
from lockstep.cli.output import print_audit, print_error
from lockstep.workspace import Workspace


@click.command("audit")
@click.option("--kind", default=None, help='Event kind, or a prefix ending in "."')
@click.option("--subject", default=None, help="Environment, release, artifact or revision.")
@click.option("--since", default=None, help="ISO-8601 timestamp.")
@click.option("--json", "as_json", is_flag=True, help="Print events as JSON lines.")
@with_workspace
def audit_command(
    ws: Workspace,
    kind: str | None,
    subject: str | None,
    since: str | None,
    as_json: bool,
) -> None:
    """List audit events, oldest first."""
    since_at = None
    if since is not None:
        try:
            since_at = datetime.fromisoformat(since)
        except ValueError:
            print_error(f"Invalid --since timestamp {since!r}")
            sys.exit(2)
    events = ws.audit.query(kind=kind, subject=subject, since=since_at)
    if as_json:
        for event in events:
            click.echo(json.dumps(event.to_dict(), sort_keys=True))
    else:
        print_audit(events)
