"""Constraint compiler: platform ceilings overlaid with direct requirements.

``compile_constraints`` turns a ``VersionCatalog`` and the direct
requirements declared by one or more modules into a ``ConstraintSet``:

1. Every catalog entry ``(name, version)`` becomes the ceiling
   ``name<=version``.
2. Each direct requirement is intersected with the ceiling for its name.
   A requirement that can only be met above the ceiling (an exact pin above
   it, or a floor beyond it) raises ``CeilingExceeded``: tightening is
   allowed, widening needs a new platform revision.
3. Names absent from the catalog are accepted without a ceiling.

Entries are ordered by name so identical inputs always compile to
identical constraint sets, which keeps lock graph hashes reproducible.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from lockstep.core.dependency.constraints import (
    PackageRequirement,
    VersionConstraint,
    parse_requirement,
)
from lockstep.exceptions import CeilingExceeded, MalformedRequirement

if TYPE_CHECKING:
    from lockstep.core.catalog.models import VersionCatalog


@dataclass(frozen=True)
class ConstraintSource:
    """One requester's constraint on a package."""

    requester: str
    constraint: VersionConstraint

    def __str__(self) -> str:
        return f"{self.requester}: {self.constraint}"


@dataclass(frozen=True)
class ConstraintEntry:
    """Everything the constraint set says about one package.

    Attributes:
        name: Canonical package name.
        ceiling: The catalog version acting as the upper bound, or None for
            packages the platform does not ship.
        sources: The catalog ceiling (if any) followed by direct
            requirements in declaration order.
        direct: True if at least one module requested the package directly.
    """

    name: str
    ceiling: str | None
    sources: tuple[ConstraintSource, ...]
    direct: bool

    @property
    def constraint(self) -> VersionConstraint:
        """Intersection of every source's constraint."""
        merged = VersionConstraint("*")
        for source in self.sources:
            merged = merged.intersect(source.constraint)
        return merged

    @property
    def ceiling_source(self) -> ConstraintSource | None:
        if self.ceiling is None:
            return None
        return self.sources[0]

    @property
    def direct_sources(self) -> tuple[ConstraintSource, ...]:
        return self.sources[1:] if self.ceiling is not None else self.sources


@dataclass(frozen=True)
class RequirementSet:
    """The direct requirements one module declares.

    A name appears at most once; when a name is declared twice the last
    declaration wins.
    """

    requester: str
    requirements: tuple[PackageRequirement, ...] = ()

    @classmethod
    def from_lines(cls, requester: str, lines: Iterable[str]) -> RequirementSet:
        """Parse ``requirements.in`` style lines.

        Blank lines and ``#`` comments are ignored.

        Raises:
            MalformedRequirement: If a line cannot be parsed.
        """
        merged: dict[str, PackageRequirement] = {}
        for number, line in enumerate(lines, start=1):
            text = line.split("#", 1)[0].strip()
            if not text:
                continue
            try:
                req = parse_requirement(text, requester)
            except ValueError as exc:
                raise MalformedRequirement(
                    f"{requester}:{number}: {exc}"
                ) from exc
            merged.pop(req.name, None)
            merged[req.name] = req
        return cls(requester, tuple(merged.values()))


@dataclass(frozen=True)
class ConstraintSet:
    """Compiled, deterministically ordered constraints.

    Recomputed on every resolution attempt and never persisted; the
    ``fingerprint`` is stored in lock graph provenance instead.
    """

    revision: str | None
    entries: tuple[ConstraintEntry, ...] = field(default_factory=tuple)

    @property
    def names(self) -> list[str]:
        return [e.name for e in self.entries]

    @property
    def roots(self) -> list[str]:
        """Directly requested package names, sorted."""
        return [e.name for e in self.entries if e.direct]

    def get(self, name: str) -> ConstraintEntry | None:
        for entry in self.entries:
            if entry.name == name:
                return entry
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "revision": self.revision,
            "entries": [
                {
                    "name": e.name,
                    "ceiling": e.ceiling,
                    "direct": e.direct,
                    "constraint": str(e.constraint),
                    "sources": [
                        [s.requester, str(s.constraint)] for s in e.sources
                    ],
                }
                for e in self.entries
            ],
        }

    def fingerprint(self) -> str:
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return "sha256:" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def compile_constraints(
    catalog: VersionCatalog | None,
    requirement_sets: Sequence[RequirementSet] | Iterable[PackageRequirement],
) -> ConstraintSet:
    """Compile catalog ceilings and direct requirements into a ConstraintSet.

    Args:
        catalog: The active platform revision, or None when the platform
            ships nothing relevant.
        requirement_sets: ``RequirementSet`` objects, one per declaring
            module, or a flat iterable of ``PackageRequirement`` (requester
            taken from each requirement, defaulting to "direct").

    Raises:
        MalformedRequirement: If a requirement contradicts itself.
        CeilingExceeded: If a requirement can only be met above its
            catalog ceiling.
    """
    sets = _as_requirement_sets(requirement_sets)

    sources: dict[str, list[ConstraintSource]] = {}
    ceilings: dict[str, str] = dict(catalog.entries) if catalog is not None else {}
    caps: dict[str, VersionConstraint] = catalog.ceilings() if catalog is not None else {}
    direct: set[str] = set()

    for name, cap in caps.items():
        sources[name] = [ConstraintSource(catalog.requester, cap)]

    for req_set in sets:
        for req in req_set.requirements:
            if not req.constraint.is_satisfiable():
                raise MalformedRequirement(
                    f"{req_set.requester}: {req} can never be satisfied"
                )
            cap = caps.get(req.name)
            if cap is not None and not cap.intersect(req.constraint).is_satisfiable():
                raise CeilingExceeded(req.name, str(req.constraint), ceilings[req.name])
            sources.setdefault(req.name, []).append(
                ConstraintSource(req_set.requester, req.constraint)
            )
            direct.add(req.name)

    entries = tuple(
        ConstraintEntry(
            name=name,
            ceiling=ceilings.get(name),
            sources=tuple(sources[name]),
            direct=name in direct,
        )
        for name in sorted(sources)
    )
    return ConstraintSet(
        revision=catalog.revision if catalog is not None else None,
        entries=entries,
    )


def _as_requirement_sets(
    items: Sequence[RequirementSet] | Iterable[PackageRequirement],
) -> list[RequirementSet]:
    items = list(items)
    if all(isinstance(i, RequirementSet) for i in items):
        return items  # type: ignore[return-value]
    grouped: dict[str, dict[str, PackageRequirement]] = {}
    for item in items:
        if not isinstance(item, PackageRequirement):
            raise TypeError(
                "requirement_sets must hold RequirementSet or PackageRequirement"
            )
        requester = item.requester or "direct"
        bucket = grouped.setdefault(requester, {})
        bucket.pop(item.name, None)
        bucket[item.name] = item
    return [RequirementSet(r, tuple(reqs.values())) for r, reqs in grouped.items()]
