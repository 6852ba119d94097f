"""Property-based tests for constraint compilation and SAT resolution.

Random acyclic indexes and requirement sets check that:
- resolution is deterministic for identical inputs;
- no pinned version ever sits above its catalog ceiling;
- every dependency of every pinned version is satisfied by the pinned set.
"""
from __future__ import annotations

from typing import Any

from hypothesis import given, settings
from hypothesis import strategies as st

from lockstep.core.catalog import VersionCatalog
from lockstep.core.dependency import (
    DependencyResolver,
    InMemoryIndex,
    RequirementSet,
    compile_constraints,
    parse_version,
)
from lockstep.exceptions import CeilingExceeded


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------

PACKAGES = ["alpha", "beta", "gamma", "delta", "epsilon"]
VERSIONS = ["1.0.0", "1.1.0", "1.2.0", "2.0.0", "2.1.0", "3.0.0"]

specifiers = st.sampled_from(["", ">=1.1.0", "<2.0.0", ">=1.0.0,<3.0.0", "!=1.2.0", "==2.0.0"])


@st.composite
def acyclic_index(draw: st.DrawFn) -> dict[str, dict[str, list[str]]]:
    """An index where a package only depends on packages later in PACKAGES."""
    data: dict[str, dict[str, list[str]]] = {}
    for i, name in enumerate(PACKAGES):
        versions = draw(st.lists(st.sampled_from(VERSIONS), min_size=1, max_size=4, unique=True))
        data[name] = {}
        for version in versions:
            later = PACKAGES[i + 1:]
            deps = draw(st.lists(st.sampled_from(later), max_size=2, unique=True)) if later else []
            data[name][version] = [dep + draw(specifiers) for dep in deps]
    return data


@st.composite
def requirement_sets(draw: st.DrawFn) -> list[RequirementSet]:
    sets = []
    for module in draw(st.lists(st.sampled_from(["web", "batch", "ml"]), min_size=1, max_size=3, unique=True)):
        names = draw(st.lists(st.sampled_from(PACKAGES), min_size=1, max_size=3, unique=True))
        sets.append(RequirementSet.from_lines(module, [n + draw(specifiers) for n in names]))
    return sets


catalogs = st.dictionaries(st.sampled_from(PACKAGES), st.sampled_from(VERSIONS), max_size=4)


def _compile(ceilings: dict[str, str], sets: list[RequirementSet]) -> Any:
    catalog = VersionCatalog.from_pairs("r1", sorted(ceilings.items())) if ceilings else None
    try:
        return compile_constraints(catalog, sets)
    except CeilingExceeded:
        return None


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


class TestDeterminism:
    """Same catalog, requirements and index give the same answer."""

    @given(data=acyclic_index(), sets=requirement_sets(), ceilings=catalogs)
    @settings(max_examples=60, deadline=None)
    def test_repeated_resolution_is_identical(
        self, data: dict, sets: list[RequirementSet], ceilings: dict[str, str]
    ) -> None:
        constraints = _compile(ceilings, sets)
        if constraints is None:
            return
        first = DependencyResolver(InMemoryIndex.from_dict(data)).resolve(constraints)
        second = DependencyResolver(InMemoryIndex.from_dict(data)).resolve(constraints)

        assert first.success == second.success
        assert first.installed == second.installed
        if not first.success:
            assert first.conflict == second.conflict

    @given(data=acyclic_index(), sets=requirement_sets())
    @settings(max_examples=40, deadline=None)
    def test_module_order_does_not_change_pins(
        self, data: dict, sets: list[RequirementSet]
    ) -> None:
        index = InMemoryIndex.from_dict(data)
        forward = DependencyResolver(index).resolve(compile_constraints(None, sets))
        backward = DependencyResolver(index).resolve(compile_constraints(None, sets[::-1]))
        assert forward.success == backward.success
        assert forward.installed == backward.installed


class TestCeilings:
    """A pinned version never exceeds its platform ceiling."""

    @given(data=acyclic_index(), sets=requirement_sets(), ceilings=catalogs)
    @settings(max_examples=80, deadline=None)
    def test_pins_stay_at_or_below_ceiling(
        self, data: dict, sets: list[RequirementSet], ceilings: dict[str, str]
    ) -> None:
        constraints = _compile(ceilings, sets)
        if constraints is None:
            return
        result = DependencyResolver(InMemoryIndex.from_dict(data)).resolve(constraints)
        if not result.success:
            return

        for name, version in result.installed.items():
            if name in ceilings:
                assert parse_version(version) <= parse_version(ceilings[name])


class TestSatisfaction:
    """A successful resolution meets every requirement and dependency."""

    @given(data=acyclic_index(), sets=requirement_sets())
    @settings(max_examples=80, deadline=None)
    def test_direct_requirements_met(
        self, data: dict, sets: list[RequirementSet]
    ) -> None:
        result = DependencyResolver(InMemoryIndex.from_dict(data)).resolve(
            compile_constraints(None, sets)
        )
        if not result.success:
            return

        for req_set in sets:
            for req in req_set.requirements:
                assert req.constraint.satisfies(result.installed[req.name])

    @given(data=acyclic_index(), sets=requirement_sets())
    @settings(max_examples=80, deadline=None)
    def test_dependencies_closed_and_satisfied(
        self, data: dict, sets: list[RequirementSet]
    ) -> None:
        index = InMemoryIndex.from_dict(data)
        result = DependencyResolver(index).resolve(compile_constraints(None, sets))
        if not result.success:
            return

        for name, version in result.installed.items():
            for dep in index.dependencies(name, version):
                assert dep.name in result.installed, f"{name}=={version} needs {dep.name}"
                assert dep.constraint.satisfies(result.installed[dep.name])

    @given(data=acyclic_index(), sets=requirement_sets())
    @settings(max_examples=40, deadline=None)
    def test_failure_always_carries_a_report(
        self, data: dict, sets: list[RequirementSet]
    ) -> None:
        result = DependencyResolver(InMemoryIndex.from_dict(data)).resolve(
            compile_constraints(None, sets)
        )
        if not result.success:
            assert result.conflict is not None
            assert result.conflict.requested_by
            assert result.installed == {}
