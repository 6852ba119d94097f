"""Building lock graphs from resolution results.

The normal workflow::

    constraints = compile_constraints(catalog, requirement_sets)
    resolution = DependencyResolver(index).resolve(constraints)
    graph = LockGraph.from_resolution(resolution, constraints)
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from lockstep import RESOLVER_VERSION
from lockstep.core.dependency.index import find_cycles
from lockstep.core.lockgraph.models import LockedPackage, LockProvenance


def _from_resolution(
    cls: type,
    resolution: Any,
    constraints: Any,
    allowed_cycles: Iterable[Iterable[str]] = (),
) -> Any:
    """Create a lock graph from a successful ``Resolution``.

    Args:
        resolution: Output of ``DependencyResolver.resolve()``.
        constraints: The ``ConstraintSet`` that was resolved; recorded as
            provenance.
        allowed_cycles: Co-dependent groups accepted by the resolver.

    Raises:
        ValueError: If the resolution was not successful.
    """
    if not resolution.success:
        raise ValueError(
            "Cannot create a lock graph from a failed resolution. "
            f"Conflicts: {resolution.conflicts}"
        )

    packages = []
    for name, version in resolution.installed.items():
        entry = constraints.get(name)
        packages.append(
            LockedPackage(
                name=name,
                version=version,
                dependencies={
                    dep: resolution.installed[dep]
                    for dep in resolution.edges.get(name, [])
                    if dep in resolution.installed
                },
                shipped=entry is not None and entry.ceiling == version,
            )
        )

    adj = {name: set(deps) for name, deps in resolution.edges.items()}
    provenance = LockProvenance(
        platform_revision=constraints.revision,
        constraints_fingerprint=constraints.fingerprint(),
        constraints={e.name: str(e.constraint) for e in constraints.entries},
        resolver_version=RESOLVER_VERSION,
        allowed_cycles=[sorted(group) for group in allowed_cycles],
        cycles=find_cycles(adj),
    )
    return cls(packages, provenance)
