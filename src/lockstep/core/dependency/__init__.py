"""Layered constraint compilation and SAT-based dependency resolution.

Platform catalog ceilings and team requirements are compiled into a
``ConstraintSet``; the ``DependencyResolver`` turns it into a pinned
package set by reading the ``PackageIndex`` collaborator.

All public names are re-exported here so callers can write
``from lockstep.core.dependency import X``.
"""

from lockstep.core.dependency.constraints import (
    PackageRequirement,
    VersionConstraint,
    normalize_name,
    parse_requirement,
    parse_version,
)
from lockstep.core.dependency.index import (
    InMemoryIndex,
    PackageIndex,
    PackageNode,
)
from lockstep.core.dependency.compiler import (
    ConstraintEntry,
    ConstraintSet,
    ConstraintSource,
    RequirementSet,
    compile_constraints,
)
from lockstep.core.dependency.resolver import (
    ConflictReport,
    DependencyResolver,
    Resolution,
)

__all__ = [
    "ConflictReport",
    "ConstraintEntry",
    "ConstraintSet",
    "ConstraintSource",
    "DependencyResolver",
    "InMemoryIndex",
    "PackageIndex",
    "PackageNode",
    "PackageRequirement",
    "RequirementSet",
    "Resolution",
    "VersionConstraint",
    "compile_constraints",
    "normalize_name",
    "parse_requirement",
    "parse_version",
]
