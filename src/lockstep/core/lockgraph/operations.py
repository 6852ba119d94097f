"""Lock graph operations: deserialization, validation and diffing.

These functions are attached to ``LockGraph`` at import time (in
``__init__.py``) to keep each source file focused while presenting a single
unified API to callers.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from lockstep.core.dependency.constraints import parse_version
from lockstep.core.dependency.index import find_cycles
from lockstep.core.lockgraph.models import _HASH_RE, LockedPackage, LockProvenance


def _from_dict(cls: type, data: dict[str, Any]) -> Any:
    """Deserialize a graph from the dict produced by ``to_dict()``.

    Missing fields fall back to defaults so older documents still load.
    """
    packages = [
        LockedPackage(
            name=name,
            version=entry.get("version", ""),
            dependencies=dict(entry.get("dependencies", {})),
            shipped=bool(entry.get("shipped", False)),
        )
        for name, entry in data.get("packages", {}).items()
    ]
    prov = data.get("provenance", {})
    provenance = LockProvenance(
        platform_revision=prov.get("platform_revision"),
        constraints_fingerprint=prov.get("constraints_fingerprint", ""),
        constraints=dict(prov.get("constraints", {})),
        resolver_version=prov.get("resolver_version", ""),
        allowed_cycles=[list(g) for g in prov.get("allowed_cycles", [])],
        cycles=[list(c) for c in prov.get("cycles", [])],
    )
    return cls(packages, provenance)


def _from_json(cls: type, json_str: str) -> Any:
    """Deserialize from a JSON string.

    Raises:
        json.JSONDecodeError: If the string is not valid JSON.
    """
    return cls.from_dict(json.loads(json_str))


def _read(cls: type, path: Path) -> Any:
    """Read a graph from disk.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
    """
    return cls.from_json(path.read_text(encoding="utf-8"))


def _validate(self: Any, declared_hash: str | None = None) -> list[str]:
    """Check the graph for internal consistency.

    1. Every dependency edge points at a package in the graph, pinned to
       the same version.
    2. Any cycle among the edges lies within a declared co-dependent group.
    3. Every version is a valid version.
    4. If *declared_hash* is given, it is well formed and matches the
       recomputed content hash.

    Returns:
        Validation error messages; empty means valid.
    """
    errors: list[str] = []

    for package in self:
        for dep_name, dep_version in package.dependencies.items():
            target = self.get(dep_name)
            if target is None:
                errors.append(
                    f"Package {package.name!r} depends on {dep_name!r} which "
                    f"is not in the lock graph"
                )
            elif target.version != dep_version:
                errors.append(
                    f"Package {package.name!r} records {dep_name}=={dep_version} "
                    f"but the graph pins {target.version}"
                )

    adj = {p.name: set(p.dependencies) for p in self}
    allowed = [frozenset(g) for g in self.provenance.allowed_cycles]
    for cycle in find_cycles(adj):
        if not any(frozenset(cycle) <= group for group in allowed):
            errors.append("Undeclared dependency cycle: " + " -> ".join(cycle))

    for package in self:
        try:
            parse_version(package.version)
        except ValueError:
            errors.append(
                f"Package {package.name!r} has invalid version {package.version!r}"
            )

    if declared_hash is not None:
        if not _HASH_RE.match(declared_hash):
            errors.append(f"Malformed content hash {declared_hash!r}")
        elif declared_hash != self.content_hash:
            errors.append(
                f"Content hash mismatch: declared {declared_hash}, "
                f"computed {self.content_hash}"
            )

    return errors


def _diff(self: Any, other: Any) -> dict[str, Any]:
    """Compare two graphs, e.g. the deployed one and a candidate.

    Returns:
        ``{"added": {name: version}, "removed": {name: version},
        "changed": {name: {"from": old, "to": new}}}``.
    """
    mine, theirs = self.pins(), other.pins()
    added = {n: theirs[n] for n in sorted(theirs) if n not in mine}
    removed = {n: mine[n] for n in sorted(mine) if n not in theirs}
    changed = {
        n: {"from": mine[n], "to": theirs[n]}
        for n in sorted(mine)
        if n in theirs and mine[n] != theirs[n]
    }
    return {"added": added, "removed": removed, "changed": changed}
