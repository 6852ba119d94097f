"""Package index collaborator interface and the in-memory index.

The resolver never talks to a real package registry directly; it reads
available versions and declared dependencies through ``PackageIndex``.
``InMemoryIndex`` holds a snapshot of registry state (loaded from a YAML or
JSON document, or built in tests) and is the index used for reproducible
resolution. ``lockstep.registry.pypi_index.PyPIIndex`` is the live variant.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from lockstep.core.dependency.constraints import (
    PackageRequirement,
    _version_key,
    normalize_name,
    parse_requirement,
)

logger = logging.getLogger(__name__)


class PackageIndex(ABC):
    """Read-only view of a package registry."""

    @abstractmethod
    def versions(self, name: str) -> list[str]:
        """Return all known versions of *name*, newest first."""

    @abstractmethod
    def dependencies(self, name: str, version: str) -> list[PackageRequirement]:
        """Return the requirements declared by *name* at *version*."""

    def dependencies_of(
        self, name: str, versions: list[str]
    ) -> dict[str, list[PackageRequirement]]:
        """Return the requirements of several versions of *name* at once.

        Remote indexes override this to fetch the versions in one batch.
        """
        return {version: self.dependencies(name, version) for version in versions}


# ---------------------------------------------------------------------------
# PackageNode: one (name, version) in the index
# ---------------------------------------------------------------------------


@dataclass
class PackageNode:
    """A specific package version and the requirements it declares."""

    name: str
    version: str
    dependencies: list[PackageRequirement] = field(default_factory=list)


# ---------------------------------------------------------------------------
# InMemoryIndex
# ---------------------------------------------------------------------------


class InMemoryIndex(PackageIndex):
    """A registry snapshot held in memory.

    Thread safety: reads are safe to share between concurrent resolutions;
    ``add_package`` is not synchronised and is meant for construction time.
    """

    def __init__(self) -> None:
        self._nodes: dict[tuple[str, str], PackageNode] = {}

    @property
    def packages(self) -> set[str]:
        return {name for name, _ in self._nodes}

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    def add_package(
        self,
        name: str,
        version: str,
        dependencies: list[str] | list[PackageRequirement] | None = None,
    ) -> PackageNode:
        """Add (or replace) a package version.

        Dependencies may be given as requirement strings (``"six>=1.0"``) or
        ready ``PackageRequirement`` objects.

        Raises:
            ValueError: If the version or a dependency string is malformed.
        """
        _version_key(version)
        canonical = normalize_name(name)
        requester = f"{canonical}=={version}"
        deps: list[PackageRequirement] = []
        for dep in dependencies or []:
            if isinstance(dep, str):
                dep = parse_requirement(dep)
            deps.append(
                PackageRequirement(dep.name, dep.constraint, requester)
            )
        node = PackageNode(canonical, version, deps)
        self._nodes[(canonical, version)] = node
        return node

    def get_node(self, name: str, version: str) -> PackageNode | None:
        return self._nodes.get((normalize_name(name), version))

    def versions(self, name: str) -> list[str]:
        canonical = normalize_name(name)
        found = [ver for (n, ver) in self._nodes if n == canonical]
        found.sort(key=_version_key, reverse=True)
        return found

    def dependencies(self, name: str, version: str) -> list[PackageRequirement]:
        node = self.get_node(name, version)
        return list(node.dependencies) if node else []

    def detect_cycles(self) -> list[list[str]]:
        """Detect name-level dependency cycles using DFS colouring.

        Returns:
            Cycles as name paths (e.g. ``["a", "b", "a"]``). Empty if none.
        """
        adj: dict[str, set[str]] = defaultdict(set)
        for (name, _), node in self._nodes.items():
            for dep in node.dependencies:
                adj[name].add(dep.name)
        return find_cycles(adj)

    # -- Loading ------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InMemoryIndex:
        """Build an index from ``{name: {version: [requirement, ...]}}``."""
        index = cls()
        for name, versions in (data or {}).items():
            if not isinstance(versions, dict):
                raise ValueError(
                    f"Index entry for {name!r} must map versions to "
                    f"dependency lists"
                )
            for version, deps in versions.items():
                index.add_package(str(name), str(version), list(deps or []))
        return index

    @classmethod
    def read(cls, path: Path) -> InMemoryIndex:
        """Read an index snapshot from a YAML or JSON file."""
        text = path.read_text(encoding="utf-8")
        if path.suffix == ".json":
            data = json.loads(text)
        else:
            data = yaml.safe_load(text)
        index = cls.from_dict(data or {})
        logger.info("Loaded index %s with %d package versions", path, index.node_count)
        return index


def find_cycles(adj: dict[str, set[str]]) -> list[list[str]]:
    """Return every back-edge cycle in a name-level adjacency map."""
    all_names: set[str] = set(adj)
    for targets in adj.values():
        all_names |= targets

    WHITE, GRAY, BLACK = 0, 1, 2
    color: dict[str, int] = {s: WHITE for s in all_names}
    parent: dict[str, str | None] = {s: None for s in all_names}
    cycles: list[list[str]] = []

    def _dfs(u: str) -> None:
        color[u] = GRAY
        for v in sorted(adj.get(u, set())):
            if color[v] == GRAY:
                # Back edge: walk parents from u back to v.
                cycle = [v, u]
                cur = parent.get(u)
                while cur is not None and cur != v:
                    cycle.append(cur)
                    cur = parent.get(cur)
                cycle.append(v)
                cycle.reverse()
                if cycle[0] == cycle[1]:
                    cycle = cycle[1:]
                cycles.append(cycle)
            elif color[v] == WHITE:
                parent[v] = u
                _dfs(v)
        color[u] = BLACK

    for s in sorted(all_names):
        if color[s] == WHITE:
            _dfs(s)
    return cycles
