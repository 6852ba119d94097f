"""Lock graph data models: LockedPackage and LockProvenance.

Pure data holders with no business logic, safe to import from anywhere
without circular-dependency concerns.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

# Content hash format: "sha256:<64-hex-characters>"
_HASH_RE = re.compile(r"^sha256:[0-9a-f]{64}$")


@dataclass(frozen=True)
class LockedPackage:
    """One pinned package.

    Attributes:
        name: Canonical package name.
        version: Resolved exact version.
        dependencies: ``name -> resolved version`` of what this package
            requires, for conflict explanation only. Never re-resolved at
            deploy time.
        shipped: True if the version is the one the platform catalog ships.
    """

    name: str
    version: str
    dependencies: dict[str, str] = field(default_factory=dict)
    shipped: bool = False


@dataclass(frozen=True)
class LockProvenance:
    """Where a lock graph came from.

    Attributes:
        platform_revision: The catalog revision used for ceilings.
        constraints_fingerprint: Hash of the compiled constraint set.
        constraints: ``name -> compiled constraint`` snapshot.
        resolver_version: Resolver semantics version.
        allowed_cycles: Co-dependent groups declared at resolution time.
        cycles: Cycles present in the graph (each within an allowed group).
    """

    platform_revision: str | None = None
    constraints_fingerprint: str = ""
    constraints: dict[str, str] = field(default_factory=dict)
    resolver_version: str = ""
    allowed_cycles: list[list[str]] = field(default_factory=list)
    cycles: list[list[str]] = field(default_factory=list)
