"""Rich output formatting helpers for the Lockstep CLI.

Promotion states are coloured by how far along they are:
    deployed (full) = bold green, canary = yellow, gates = cyan,
    halted / rolled back = bold red, finished = dim
"""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from lockstep.core.catalog import VersionCatalog
from lockstep.core.dependency import ConflictReport
from lockstep.core.lockgraph import LockGraph
from lockstep.core.promotion import Environment, PromotionRecord, PromotionState, RollbackResult
from lockstep.core.store import AuditEvent, Release

_STATE_STYLES: dict[PromotionState, str] = {
    PromotionState.PROPOSED: "cyan",
    PromotionState.GATE_UNIT: "cyan",
    PromotionState.GATE_INTEGRATION: "cyan",
    PromotionState.GATE_SMOKE: "cyan",
    PromotionState.CANARY: "yellow",
    PromotionState.FULL: "bold green",
    PromotionState.SUPERSEDED: "dim",
    PromotionState.ROLLED_BACK: "bold red",
    PromotionState.CANCELLED: "dim",
}

console = Console()
err_console = Console(stderr=True)


def state_text(record: PromotionRecord) -> Text:
    """Return the coloured state label of a promotion record."""
    if record.halted:
        gate = record.failed_gate.value if record.failed_gate else "?"
        return Text(f"{record.state.value} (halted: {gate} {record.failure.value})", style="bold red")
    return Text(record.state.value, style=_STATE_STYLES.get(record.state, "white"))


def print_error(message: str) -> None:
    err_console.print(f"[bold red]Error:[/bold red] {message}")


# ---------------------------------------------------------------------------
# Catalogs and resolution
# ---------------------------------------------------------------------------


def print_catalog(catalog: VersionCatalog) -> None:
    table = Table(
        title=f"Platform revision {catalog.revision}",
        show_header=True,
        header_style="bold",
    )
    table.add_column("Package", style="bold")
    table.add_column("Ceiling", justify="right")
    for name, version in sorted(catalog.entries):
        table.add_row(name, version)
    console.print(table)
    console.print(
        f"[bold]{len(catalog)}[/bold] packages | ingested {catalog.created_at:%Y-%m-%d %H:%M}"
    )


def print_resolution_summary(artifact_id: str, graph: LockGraph) -> None:
    """Print the pinned set of a successful resolution."""
    table = Table(title="Resolved Packages", show_header=True, header_style="bold")
    table.add_column("Package", style="bold")
    table.add_column("Version", justify="right")
    table.add_column("Source", justify="center")
    table.add_column("Requires", style="dim")
    for package in graph:
        source = Text("platform", style="green") if package.shipped else Text("resolved", style="cyan")
        table.add_row(
            package.name,
            package.version,
            source,
            ", ".join(f"{n}=={v}" for n, v in sorted(package.dependencies.items())),
        )
    console.print(table)
    revision = graph.provenance.platform_revision or "none"
    console.print(
        f"[green]Resolution succeeded:[/green] {len(graph)} packages pinned "
        f"against platform revision {revision}"
    )
    console.print(f"Lock artifact: [bold]{artifact_id}[/bold]")


def print_conflict(report: ConflictReport) -> None:
    """Print a conflict report naming every requester."""
    table = Table(
        title=f"Conflict on {report.package}",
        show_header=True,
        header_style="bold red",
    )
    table.add_column("Requested by", style="bold")
    table.add_column("Constraint")
    for requester, constraint in zip(report.requested_by, report.conflicting_constraints):
        table.add_row(requester, f"{report.package}{constraint}" if constraint != "*" else report.package)
    console.print(table)
    if report.related:
        console.print("[dim]Related: " + "; ".join(report.related) + "[/dim]")
    console.print(f"[red]Resolution failed:[/red] {report.describe()}")


# ---------------------------------------------------------------------------
# Lock graphs
# ---------------------------------------------------------------------------


def print_lock(graph: LockGraph) -> None:
    prov = graph.provenance
    header = Text.assemble(
        ("Artifact: ", "bold"), (graph.artifact_id, ""),
        ("\nPlatform revision: ", "bold"), (prov.platform_revision or "none", ""),
        ("\nResolver: ", "bold"), (prov.resolver_version, ""),
        ("\nConstraints: ", "bold"), (prov.constraints_fingerprint, "dim"),
    )
    console.print(Panel(header, title="Lock Graph"))
    table = Table(show_header=True, header_style="bold")
    table.add_column("Package", style="bold")
    table.add_column("Version", justify="right")
    table.add_column("Constraint", style="dim")
    for package in graph:
        table.add_row(package.name, package.version, prov.constraints.get(package.name, "-"))
    console.print(table)
    if prov.cycles:
        console.print(
            "[yellow]Allowed cycles:[/yellow] "
            + "; ".join(" -> ".join(c) for c in prov.cycles)
        )


def print_diff(diff: dict[str, Any]) -> None:
    if not any(diff.values()):
        console.print("[green]No differences.[/green]")
        return
    table = Table(title="Lock Graph Diff", show_header=True, header_style="bold")
    table.add_column("Package", style="bold")
    table.add_column("Change", justify="center")
    table.add_column("From", justify="right")
    table.add_column("To", justify="right")
    for name, version in diff["added"].items():
        table.add_row(name, Text("added", style="green"), "-", version)
    for name, version in diff["removed"].items():
        table.add_row(name, Text("removed", style="red"), version, "-")
    for name, change in diff["changed"].items():
        table.add_row(name, Text("changed", style="yellow"), change["from"], change["to"])
    console.print(table)


# ---------------------------------------------------------------------------
# Releases and promotion
# ---------------------------------------------------------------------------


def print_releases(releases: list[Release]) -> None:
    if not releases:
        console.print("[dim]No releases.[/dim]")
        return
    table = Table(title="Releases", show_header=True, header_style="bold")
    table.add_column("Release", style="bold")
    table.add_column("Source")
    table.add_column("Lock artifact", style="dim")
    table.add_column("Created")
    for release in releases:
        table.add_row(
            release.id,
            release.source_ref,
            release.lock_hash[:19] + "...",
            f"{release.created_at:%Y-%m-%d %H:%M}",
        )
    console.print(table)


def print_record(record: PromotionRecord) -> None:
    parts = [
        f"[bold]{record.release_id}[/bold] in [bold]{record.environment}[/bold]:",
    ]
    console.print(" ".join(parts), state_text(record))
    if record.pending_gate is not None:
        console.print(f"  waiting for gate [cyan]{record.pending_gate.value}[/cyan]")
    if record.canary_percent is not None:
        console.print(f"  canary at [yellow]{record.canary_percent}%[/yellow] traffic")


def print_environments(
    environments: list[Environment], active: dict[str, PromotionRecord | None]
) -> None:
    table = Table(title="Environments", show_header=True, header_style="bold")
    table.add_column("Environment", style="bold")
    table.add_column("Current")
    table.add_column("Traffic", justify="right")
    table.add_column("Previous", style="dim")
    table.add_column("Active promotion")
    table.add_column("Seq", justify="right", style="dim")
    for env in environments:
        record = active.get(env.name)
        current = env.current_release or "-"
        if env.rolled_back:
            current += " (rolled back)"
        table.add_row(
            env.name,
            current,
            f"{env.traffic_split}%" if env.current_release else "-",
            env.previous_release or "-",
            Text.assemble(f"{record.release_id} ", state_text(record)) if record else Text("-", style="dim"),
            str(env.sequence),
        )
    console.print(table)


def print_rollback(result: RollbackResult) -> None:
    env = result.environment
    if result.no_op:
        console.print(
            f"[yellow]Rollback of {env.name} is a no-op:[/yellow] {result.reason}"
        )
    else:
        label = "Canary aborted" if result.reason == "canary_abort" else "Rolled back"
        console.print(f"[green]{label}:[/green] {env.name}")
    console.print(
        f"  current=[bold]{env.current_release or '-'}[/bold] "
        f"previous={env.previous_release or '-'} traffic={env.traffic_split}%"
    )


def print_audit(events: list[AuditEvent]) -> None:
    if not events:
        console.print("[dim]No audit events.[/dim]")
        return
    table = Table(title="Audit Trail", show_header=True, header_style="bold")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Time")
    table.add_column("Kind", style="bold")
    table.add_column("Subject")
    table.add_column("Details", style="dim")
    for event in events:
        details = ", ".join(f"{k}={v}" for k, v in sorted(event.details.items()))
        table.add_row(
            str(event.sequence),
            f"{event.timestamp:%Y-%m-%d %H:%M:%S}",
            event.kind,
            event.subject,
            details[:100],
        )
    console.print(table)
