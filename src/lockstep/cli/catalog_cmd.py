"""``lockstep catalog`` - Ingest and inspect platform revisions.

A catalog file is either a YAML/JSON mapping of ``name: version`` or a
plain text file of ``name==version`` lines (``#`` comments allowed).

Usage::

    lockstep catalog ingest 2024.06 platform.yaml
    lockstep catalog show            # latest revision
    lockstep catalog show 2024.06
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click
import yaml

from lockstep.cli.context import with_workspace
from lockstep.cli.output import console, print_catalog
from lockstep.exceptions import ConfigError
from lockstep.workspace import Workspace


def read_catalog_pairs(path: Path) -> list[tuple[str, str]]:
    """Read ``(name, version)`` pairs from a catalog file, in file order.

    Raises:
        ConfigError: If the file cannot be read or has the wrong shape.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read catalog file {path}: {exc}") from exc

    if path.suffix in (".yaml", ".yml", ".json"):
        try:
            data = json.loads(text) if path.suffix == ".json" else yaml.safe_load(text)
        except (ValueError, yaml.YAMLError) as exc:
            raise ConfigError(f"Cannot parse catalog file {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"Catalog file {path} must map package names to versions")
        return [(str(name), str(version)) for name, version in data.items()]

    pairs: list[tuple[str, str]] = []
    for number, line in enumerate(text.splitlines(), start=1):
        line = line.split("#", 1)[0].strip()
        if not line:
            continue
        name, sep, version = line.partition("==")
        if not sep:
            raise ConfigError(f"{path}:{number}: expected name==version, got {line!r}")
        pairs.append((name.strip(), version.strip()))
    return pairs


@click.group("catalog")
def catalog_group() -> None:
    """Manage platform revisions (version catalogs)."""


@catalog_group.command("ingest")
@click.argument("revision")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@with_workspace
def ingest_command(ws: Workspace, revision: str, path: Path) -> None:
    """Record platform REVISION from the catalog file PATH.

    Exit code 1 if REVISION already exists or an entry is malformed.
    """
    pairs = read_catalog_pairs(path)
    if not pairs:
        click.echo("Catalog file contains no packages.")
        sys.exit(2)
    catalog = ws.ingest_catalog(revision, pairs)
    console.print(
        f"[green]Ingested platform revision {catalog.revision}[/green] "
        f"({len(catalog)} packages)"
    )


@catalog_group.command("show")
@click.argument("revision", required=False)
@with_workspace
def show_command(ws: Workspace, revision: str | None) -> None:
    """Show REVISION (default: the latest ingested revision)."""
    catalog = ws.catalog(revision)
    if catalog is None:
        click.echo("No platform revision has been ingested.")
        sys.exit(2)
    print_catalog(catalog)
