"""SAT-based dependency resolution.

Encodes the resolution problem as a Boolean satisfiability instance and
uses a CDCL solver (Glucose3 via python-sat), following the OPIUM approach
(Tucker et al., ICSE 2007):

- one variable per candidate ``(package, version)``;
- at most one version per package;
- every direct requirement must be met;
- installing a version implies installing a satisfying version of each of
  its dependencies.

Every requirement and dependency clause is guarded by its own selector
literal that is passed to the solver as an assumption. When the instance is
unsatisfiable the solver's core is a set of selectors, which maps straight
back to the requesters that cannot all be satisfied. That is what the
``ConflictReport`` names.

Selection is deterministic: packages are fixed breadth-first from the
roots, each to its most preferred version that keeps the instance
satisfiable. Preference is the highest version allowed by the compiled
constraint (so never above the platform ceiling); among equal versions the
spelling the catalog ships wins.
"""

from __future__ import annotations

import logging
from collections import Counter, deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from pysat.solvers import Solver

from lockstep.core.dependency.compiler import ConstraintSet
from lockstep.core.dependency.constraints import (
    PackageRequirement,
    VersionConstraint,
    parse_version,
)
from lockstep.core.dependency.index import PackageIndex, find_cycles
from lockstep.exceptions import DependencyCycleError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConflictReport:
    """Why no pinned version set exists.

    Returned to the caller only; never persisted.

    Attributes:
        package: The package whose constraints cannot all hold.
        requested_by: Every requester of that package involved.
        conflicting_constraints: The constraint of each requester, aligned
            with ``requested_by``.
        related: Other requirements that participate in the conflict (for
            example the root requirement that pulled in a dependency).
    """

    package: str
    requested_by: tuple[str, ...]
    conflicting_constraints: tuple[str, ...]
    related: tuple[str, ...] = ()

    def describe(self) -> str:
        pairs = ", ".join(
            f"{r} wants {self.package}{c if c != '*' else ' (any)'}"
            for r, c in zip(self.requested_by, self.conflicting_constraints)
        )
        text = f"No version of {self.package!r} satisfies all requesters: {pairs}"
        if self.related:
            text += " [related: " + "; ".join(self.related) + "]"
        return text

    def to_dict(self) -> dict[str, Any]:
        return {
            "package": self.package,
            "requested_by": list(self.requested_by),
            "conflicting_constraints": list(self.conflicting_constraints),
            "related": list(self.related),
        }


@dataclass
class Resolution:
    """Result of dependency resolution.

    Attributes:
        success: True if a consistent pinned set was found.
        installed: ``name -> version`` for the pinned set.
        edges: ``name -> [dependency names]`` among installed packages,
            kept for explanation only.
        conflict: The conflict report when ``success`` is False.
    """

    success: bool
    installed: dict[str, str] = field(default_factory=dict)
    edges: dict[str, list[str]] = field(default_factory=dict)
    conflict: ConflictReport | None = None

    @property
    def conflicts(self) -> list[str]:
        """Human-readable conflict descriptions (empty on success)."""
        return [self.conflict.describe()] if self.conflict else []


# ---------------------------------------------------------------------------
# Internal encoding records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _Guard:
    """A selector-guarded requirement clause."""

    selector: int
    package: str
    requester: str
    constraint: VersionConstraint
    is_root: bool


@dataclass
class _Universe:
    candidates: dict[str, list[str]]
    deps: dict[tuple[str, str], list[PackageRequirement]]


# ---------------------------------------------------------------------------
# DependencyResolver
# ---------------------------------------------------------------------------


class DependencyResolver:
    """Resolves a ``ConstraintSet`` into a fully pinned package set.

    The resolver holds no mutable state between calls, so one instance can
    serve concurrent resolutions of independent constraint sets.

    Args:
        index: The package index collaborator.
        allowed_cycles: Groups of co-dependent package names whose mutual
            dependency cycles are accepted.
        solver_name: python-sat solver identifier.
    """

    def __init__(
        self,
        index: PackageIndex,
        allowed_cycles: Iterable[Iterable[str]] = (),
        solver_name: str = "g3",
    ) -> None:
        self._index = index
        self._allowed_cycles = [frozenset(group) for group in allowed_cycles]
        self._solver_name = solver_name

    def resolve(self, constraints: ConstraintSet) -> Resolution:
        """Compute the pinned set for *constraints*.

        Returns:
            A successful ``Resolution`` or one carrying a ``ConflictReport``.

        Raises:
            DependencyCycleError: If the pinned set contains a cycle that
                is not declared as allowed.
            RegistryUnavailable: Propagated from the index when package
                metadata cannot be fetched; no partial result is returned.
        """
        roots = constraints.roots
        if not roots:
            return Resolution(success=True)

        universe = self._closure(constraints, roots)

        early = self._check_roots(constraints, roots, universe)
        if early is not None:
            return Resolution(success=False, conflict=early)

        var_map, clauses, guards = self._encode(universe, constraints, roots)
        assumptions = [g.selector for g in guards]

        with Solver(name=self._solver_name, bootstrap_with=clauses) as solver:
            if not solver.solve(assumptions=assumptions):
                core = solver.get_core() or []
                report = self._explain(core, guards, constraints)
                logger.info("Resolution failed: %s", report.describe())
                return Resolution(success=False, conflict=report)

            installed = self._select(solver, assumptions, universe, var_map, roots)

        edges = {
            name: sorted(
                {dep.name for dep in universe.deps.get((name, version), [])}
            )
            for name, version in installed.items()
        }
        self._check_cycles(edges)
        return Resolution(
            success=True,
            installed=dict(sorted(installed.items())),
            edges=dict(sorted(edges.items())),
        )

    # -- Closure ------------------------------------------------------------

    def _preference(self, name: str, versions: list[str], constraints: ConstraintSet) -> list[str]:
        entry = constraints.get(name)
        shipped = entry.ceiling if entry is not None else None
        ordered = sorted(versions)
        ordered.sort(key=lambda v: (parse_version(v), v == shipped), reverse=True)
        return ordered

    def _valid_versions(self, name: str) -> list[str]:
        valid: list[str] = []
        for version in self._index.versions(name):
            try:
                parse_version(version)
            except ValueError:
                logger.warning("Skipping unparseable version %s==%r", name, version)
                continue
            valid.append(version)
        return valid

    def _closure(self, constraints: ConstraintSet, roots: list[str]) -> _Universe:
        """Collect every package reachable from the roots, with candidates.

        A package's candidates are the index versions allowed by its
        compiled constraint (ceiling plus direct requirements).
        """
        candidates: dict[str, list[str]] = {}
        deps: dict[tuple[str, str], list[PackageRequirement]] = {}
        queue: deque[str] = deque(roots)

        while queue:
            name = queue.popleft()
            if name in candidates:
                continue
            entry = constraints.get(name)
            allowed = entry.constraint if entry is not None else VersionConstraint("*")
            versions = [v for v in self._valid_versions(name) if allowed.satisfies(v)]
            candidates[name] = self._preference(name, versions, constraints)
            declared_by = self._index.dependencies_of(name, candidates[name])
            for version in candidates[name]:
                declared = declared_by[version]
                deps[(name, version)] = declared
                for dep in declared:
                    if dep.name not in candidates:
                        queue.append(dep.name)

        return _Universe(candidates=candidates, deps=deps)

    def _check_roots(
        self, constraints: ConstraintSet, roots: list[str], universe: _Universe
    ) -> ConflictReport | None:
        """Fail immediately when a direct requirement has no candidate."""
        for name in roots:
            if universe.candidates.get(name):
                continue
            entry = constraints.get(name)
            assert entry is not None
            available = self._valid_versions(name)
            note = (
                f"index offers {', '.join(available)}"
                if available else "no versions available in the index"
            )
            return ConflictReport(
                package=name,
                requested_by=tuple(s.requester for s in entry.sources),
                conflicting_constraints=tuple(str(s.constraint) for s in entry.sources),
                related=(note,),
            )
        return None

    # -- SAT encoding -------------------------------------------------------

    def _encode(
        self,
        universe: _Universe,
        constraints: ConstraintSet,
        roots: list[str],
    ) -> tuple[dict[tuple[str, str], int], list[list[int]], list[_Guard]]:
        var_map: dict[tuple[str, str], int] = {}
        next_var = 1
        for name in sorted(universe.candidates):
            for version in universe.candidates[name]:
                var_map[(name, version)] = next_var
                next_var += 1

        clauses: list[list[int]] = []

        # At most one version per package.
        for name in sorted(universe.candidates):
            pkg_vars = [var_map[(name, v)] for v in universe.candidates[name]]
            for i in range(len(pkg_vars)):
                for j in range(i + 1, len(pkg_vars)):
                    clauses.append([-pkg_vars[i], -pkg_vars[j]])

        guards: list[_Guard] = []

        # Root requirements: at least one candidate per directly requested package.
        for name in roots:
            entry = constraints.get(name)
            assert entry is not None
            selector = next_var
            next_var += 1
            requesters = ", ".join(s.requester for s in entry.direct_sources)
            guards.append(
                _Guard(selector, name, requesters, entry.constraint, is_root=True)
            )
            clauses.append(
                [-selector] + [var_map[(name, v)] for v in universe.candidates[name]]
            )

        # Dependency implications.
        for (name, version) in sorted(universe.deps):
            parent = var_map[(name, version)]
            for dep in universe.deps[(name, version)]:
                satisfying = [
                    var_map[(dep.name, v)]
                    for v in universe.candidates.get(dep.name, [])
                    if dep.constraint.satisfies(v)
                ]
                selector = next_var
                next_var += 1
                guards.append(
                    _Guard(
                        selector, dep.name, f"{name}=={version}",
                        dep.constraint, is_root=False,
                    )
                )
                clauses.append([-selector, -parent] + satisfying)

        return var_map, clauses, guards

    # -- Selection ----------------------------------------------------------

    def _select(
        self,
        solver: Solver,
        assumptions: list[int],
        universe: _Universe,
        var_map: dict[tuple[str, str], int],
        roots: list[str],
    ) -> dict[str, str]:
        fixed = list(assumptions)
        installed: dict[str, str] = {}
        queue: deque[str] = deque(roots)

        while queue:
            name = queue.popleft()
            if name in installed:
                continue
            for version in universe.candidates.get(name, []):
                lit = var_map[(name, version)]
                if solver.solve(assumptions=fixed + [lit]):
                    fixed.append(lit)
                    installed[name] = version
                    break
            else:  # pragma: no cover - the instance was satisfiable
                continue
            for dep in universe.deps.get((name, installed[name]), []):
                if dep.name not in installed:
                    queue.append(dep.name)

        return installed

    # -- Diagnosis ----------------------------------------------------------

    def _explain(
        self,
        core: list[int],
        guards: list[_Guard],
        constraints: ConstraintSet,
    ) -> ConflictReport:
        by_selector = {g.selector: g for g in guards}
        involved = [by_selector[s] for s in core if s in by_selector]

        edge_targets = Counter(g.package for g in involved if not g.is_root)
        if edge_targets:
            package = sorted(edge_targets.items(), key=lambda kv: (-kv[1], kv[0]))[0][0]
        else:
            package = sorted(g.package for g in involved)[0]

        requested_by: list[str] = []
        conflicting: list[str] = []
        entry = constraints.get(package)
        if entry is not None:
            for source in entry.sources:
                requested_by.append(source.requester)
                conflicting.append(str(source.constraint))
        for g in involved:
            if g.package == package and not g.is_root:
                requested_by.append(g.requester)
                conflicting.append(str(g.constraint))

        related = tuple(
            f"{g.requester} requires {g.package}{'' if str(g.constraint) == '*' else g.constraint}"
            for g in involved
            if g.package != package
        )
        return ConflictReport(
            package=package,
            requested_by=tuple(requested_by),
            conflicting_constraints=tuple(conflicting),
            related=related,
        )

    # -- Cycles -------------------------------------------------------------

    def _check_cycles(self, edges: dict[str, list[str]]) -> None:
        adj = {name: set(targets) for name, targets in edges.items()}
        for cycle in find_cycles(adj):
            members = frozenset(cycle)
            if not any(members <= group for group in self._allowed_cycles):
                raise DependencyCycleError(cycle)
