"""``lockstep resolve`` - Compile and resolve requirements into a lock artifact.

Each REQUIREMENTS file holds one module's direct requirements, one per
line (``numpy<=1.26.0``); the module is named after the file stem. They
are compiled against the platform revision's ceilings, resolved against a
package index, and the resulting lock graph is recorded.

Usage::

    lockstep resolve analytics.in reporting.in --index index.yaml
    lockstep resolve analytics.in --pypi --python-version 3.11 -o lock.json

Exit Codes:
    0 - Resolved; the lock artifact id is printed.
    1 - Conflict, ceiling exceeded, undeclared cycle or registry unavailable.
    2 - Missing input (no index given, unreadable file, unknown revision).
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import click

from lockstep.cli.context import with_workspace
from lockstep.cli.output import print_conflict, print_error, print_resolution_summary
from lockstep.core.dependency import InMemoryIndex, PackageIndex, RequirementSet
from lockstep.exceptions import ResolutionConflict
from lockstep.registry import PyPIIndex
from lockstep.workspace import Workspace


def _load_index(
    index_path: Path | None, pypi: bool, python_version: str | None, names: list[str]
) -> PackageIndex:
    if index_path is not None:
        try:
            return InMemoryIndex.read(index_path)
        except ValueError as exc:
            print_error(f"Invalid index {index_path}: {exc}")
            sys.exit(2)
    environment = {"python_version": python_version} if python_version else None
    index = PyPIIndex(environment=environment)
    asyncio.run(index.prefetch(names))
    return index


@click.command("resolve")
@click.argument(
    "requirements",
    nargs=-1,
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
)
@click.option(
    "--index", "index_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Registry snapshot (YAML/JSON: {name: {version: [requirements]}}).",
)
@click.option("--pypi", is_flag=True, help="Resolve against the live PyPI JSON API.")
@click.option("--python-version", default=None, help="Marker python_version for --pypi.")
@click.option("--revision", default=None, help="Platform revision (default: latest).")
@click.option(
    "--output", "-o",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Also write the lock graph JSON to this path.",
)
@with_workspace
def resolve_command(
    ws: Workspace,
    requirements: tuple[Path, ...],
    index_path: Path | None,
    pypi: bool,
    python_version: str | None,
    revision: str | None,
    output: Path | None,
) -> None:
    """Resolve REQUIREMENTS files into a recorded lock artifact."""
    if index_path is None and not pypi:
        print_error("Give a package index with --index PATH or use --pypi.")
        sys.exit(2)

    sets = [
        RequirementSet.from_lines(path.stem, path.read_text(encoding="utf-8").splitlines())
        for path in requirements
    ]
    names = sorted({req.name for s in sets for req in s.requirements})
    index = _load_index(index_path, pypi, python_version, names)

    try:
        artifact_id, graph = ws.resolve(sets, index, revision)
    except ResolutionConflict as exc:
        print_conflict(exc.report)
        sys.exit(1)

    print_resolution_summary(artifact_id, graph)
    if output is not None:
        graph.write(output)
        click.echo(f"\nLock graph written to: {output}")
