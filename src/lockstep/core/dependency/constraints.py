"""Version constraints and requirement edges.

This module provides the foundational data types for declaring version
requirements: the ``VersionConstraint`` value object and the
``PackageRequirement`` edge used both for direct requirements and for the
dependencies a package declares in the index.

Constraint grammar (comma-separated atoms, all must hold):

- Exact: ``=1.0`` or ``==1.0``
- Ceiling: ``<=2.0`` (inclusive) or ``<2.0`` (exclusive)
- Floor: ``>=1.0`` or ``>1.0``
- Exclusion: ``!=1.3``
- Range: any combination, e.g. ``>=1.0,<2.0``
- Unconstrained: ``*`` or the empty string

Versions are ordered with PEP 440 semantics via ``packaging``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import cached_property

from packaging.utils import canonicalize_name
from packaging.version import InvalidVersion, Version

# ---------------------------------------------------------------------------
# Version comparison utilities
# ---------------------------------------------------------------------------


def parse_version(version: str | Version) -> Version:
    """Parse a version string into a comparable ``packaging`` Version.

    Raises:
        ValueError: If the string is not a valid PEP 440 version.
    """
    if isinstance(version, Version):
        return version
    try:
        return Version(version.strip())
    except InvalidVersion as exc:
        raise ValueError(f"Invalid version: {version!r}") from exc


def _version_key(version: str) -> Version:
    """Sort key for version strings."""
    return parse_version(version)


# ---------------------------------------------------------------------------
# VersionConstraint
# ---------------------------------------------------------------------------

_CONSTRAINT_ATOM_RE = re.compile(
    r"^\s*(?P<op>==|!=|>=|<=|>|<|=)\s*(?P<ver>[0-9A-Za-z][0-9A-Za-z.+!_\-]*)\s*$"
)

_UNCONSTRAINED = ("", "*")

# A bound is (version, inclusive).
Bound = tuple[Version, bool]


@dataclass(frozen=True)
class Atom:
    """One comparison of a constraint, e.g. ``<=1.24.0``."""

    op: str
    text: str

    @property
    def version(self) -> Version:
        return parse_version(self.text)

    def __str__(self) -> str:
        return f"{self.op}{self.text}"


def _parse_atom(atom: str) -> Atom:
    m = _CONSTRAINT_ATOM_RE.match(atom)
    if not m:
        raise ValueError(f"Invalid constraint atom: {atom!r}")
    op = "==" if m.group("op") == "=" else m.group("op")
    text = m.group("ver")
    parse_version(text)
    return Atom(op, text)


def _tighter_lower(a: Bound | None, b: Bound | None) -> Bound | None:
    if a is None:
        return b
    if b is None:
        return a
    if a[0] != b[0]:
        return a if a[0] > b[0] else b
    # Same version: the exclusive bound is tighter.
    return a if not a[1] else b


def _tighter_upper(a: Bound | None, b: Bound | None) -> Bound | None:
    if a is None:
        return b
    if b is None:
        return a
    if a[0] != b[0]:
        return a if a[0] < b[0] else b
    return a if not a[1] else b


@dataclass(frozen=True)
class VersionConstraint:
    """A version constraint specification, analogous to pip constraint syntax.

    Instances are immutable values; ``raw`` is the constraint as written (or
    as normalised by ``intersect``). Parsing happens on construction so a
    malformed constraint never travels further than where it was declared.

    Attributes:
        raw: The raw constraint string (e.g. ">=1.0,<2.0").

    Raises:
        ValueError: If any atom or version in *raw* is malformed.
    """

    raw: str

    def __post_init__(self) -> None:
        # Force parsing so malformed constraints fail early.
        self.atoms  # noqa: B018

    @cached_property
    def atoms(self) -> tuple[Atom, ...]:
        stripped = self.raw.strip()
        if stripped in _UNCONSTRAINED:
            return ()
        return tuple(
            _parse_atom(a) for a in stripped.split(",") if a.strip()
        )

    # -- Classification -----------------------------------------------------

    @property
    def is_unconstrained(self) -> bool:
        return not self.atoms

    @property
    def kind(self) -> str:
        """Classify as "unconstrained", "exact", "ceiling" or "range"."""
        if not self.atoms:
            return "unconstrained"
        ops = {a.op for a in self.atoms}
        if "==" in ops:
            return "exact"
        if ops <= {"<=", "<"}:
            return "ceiling"
        return "range"

    @property
    def exact_versions(self) -> set[Version]:
        return {a.version for a in self.atoms if a.op == "=="}

    @property
    def lower_bound(self) -> Bound | None:
        """Tightest lower bound implied by ``>=``, ``>`` and ``==`` atoms."""
        bound: Bound | None = None
        for a in self.atoms:
            if a.op in (">=", "=="):
                bound = _tighter_lower(bound, (a.version, True))
            elif a.op == ">":
                bound = _tighter_lower(bound, (a.version, False))
        return bound

    @property
    def upper_bound(self) -> Bound | None:
        """Tightest upper bound implied by ``<=``, ``<`` and ``==`` atoms."""
        bound: Bound | None = None
        for a in self.atoms:
            if a.op in ("<=", "=="):
                bound = _tighter_upper(bound, (a.version, True))
            elif a.op == "<":
                bound = _tighter_upper(bound, (a.version, False))
        return bound

    # -- Evaluation ---------------------------------------------------------

    def satisfies(self, version: str | Version) -> bool:
        """Check whether a version satisfies every atom of this constraint.

        Raises:
            ValueError: If *version* is not a valid version.
        """
        if not self.atoms:
            return True
        ver = parse_version(version)
        return all(self._atom_satisfies(a, ver) for a in self.atoms)

    @staticmethod
    def _atom_satisfies(atom: Atom, ver: Version) -> bool:
        target = atom.version
        op = atom.op
        if op == "==":
            return ver == target
        elif op == "!=":
            return ver != target
        elif op == ">=":
            return ver >= target
        elif op == "<=":
            return ver <= target
        elif op == ">":
            return ver > target
        elif op == "<":
            return ver < target
        else:  # pragma: no cover
            raise ValueError(f"Unknown operator: {op!r}")

    def is_satisfiable(self) -> bool:
        """Return False if no version could ever satisfy this constraint.

        This is a structural check on the bounds; it does not consult any
        package index.
        """
        if len(self.exact_versions) > 1:
            return False
        low, high = self.lower_bound, self.upper_bound
        if low is not None and high is not None:
            if low[0] > high[0]:
                return False
            if low[0] == high[0]:
                # The bounds pin a single version, which an exclusion may remove.
                if not (low[1] and high[1]) or not self.satisfies(low[0]):
                    return False
        for exact in self.exact_versions:
            if not self.satisfies(exact):
                return False
        return True

    # -- Combination --------------------------------------------------------

    def intersect(self, other: VersionConstraint) -> VersionConstraint:
        """Return the normalised conjunction of two constraints.

        Redundant bounds collapse to the tightest one, so ``<=1.24.0``
        intersected with ``<=1.26.0`` yields ``<=1.24.0``. An unsatisfiable
        intersection keeps every atom so the conflict stays explainable.
        """
        atoms = list(self.atoms) + list(other.atoms)
        if not atoms:
            return VersionConstraint("*")
        combined = VersionConstraint(",".join(str(a) for a in atoms))
        if not combined.is_satisfiable():
            seen: list[str] = []
            for a in atoms:
                if str(a) not in seen:
                    seen.append(str(a))
            return VersionConstraint(",".join(seen))
        return combined._normalised()

    def _normalised(self) -> VersionConstraint:
        exacts = [a for a in self.atoms if a.op == "=="]
        if exacts:
            return VersionConstraint(str(exacts[0]))

        def _pick(ops: tuple[str, ...], bound: Bound | None) -> Atom | None:
            if bound is None:
                return None
            for a in self.atoms:
                if a.op in ops and a.version == bound[0] and (
                    (a.op in (">=", "<=")) == bound[1]
                ):
                    return a
            return None  # pragma: no cover

        pieces: list[str] = []
        low = _pick((">=", ">"), self.lower_bound)
        high = _pick(("<=", "<"), self.upper_bound)
        if low is not None:
            pieces.append(str(low))
        if high is not None:
            pieces.append(str(high))
        excluded: list[str] = []
        for a in self.atoms:
            if a.op == "!=" and str(a) not in excluded:
                excluded.append(str(a))
        pieces.extend(sorted(excluded, key=lambda s: parse_version(s[2:])))
        return VersionConstraint(",".join(pieces) if pieces else "*")

    def __str__(self) -> str:
        return self.raw.strip() or "*"

    def __repr__(self) -> str:
        return f"VersionConstraint({self.raw!r})"


def ceiling(version: str) -> VersionConstraint:
    """Build the ceiling constraint ``<=version``."""
    return VersionConstraint(f"<={version}")


# ---------------------------------------------------------------------------
# PackageRequirement: an edge in the dependency closure
# ---------------------------------------------------------------------------

_REQUIREMENT_RE = re.compile(
    r"^\s*(?P<name>[A-Za-z0-9](?:[A-Za-z0-9._\-]*[A-Za-z0-9])?)\s*(?P<spec>.*?)\s*$"
)


def normalize_name(name: str) -> str:
    """Canonicalise a package name (PEP 503)."""
    return canonicalize_name(name.strip())


@dataclass(frozen=True)
class PackageRequirement:
    """A requirement that package ``name`` is installed within ``constraint``.

    Used both for direct requirements declared by a team and for the
    dependencies a package version declares in the index.

    Attributes:
        name: Canonical package name.
        constraint: Version constraint the installed version must satisfy.
        requester: Who asked for it (a module name, "catalog:<rev>", or
            "pkg==1.0" for transitive dependencies). Empty when irrelevant.
    """

    name: str
    constraint: VersionConstraint
    requester: str = ""

    def __str__(self) -> str:
        spec = str(self.constraint)
        return self.name if spec == "*" else f"{self.name}{spec}"


def parse_requirement(text: str, requester: str = "") -> PackageRequirement:
    """Parse ``"numpy<=1.26.0"`` style text into a ``PackageRequirement``.

    Raises:
        ValueError: If the name or constraint is malformed.
    """
    m = _REQUIREMENT_RE.match(text)
    if not m or not text.strip():
        raise ValueError(f"Invalid requirement: {text!r}")
    return PackageRequirement(
        name=normalize_name(m.group("name")),
        constraint=VersionConstraint(m.group("spec")),
        requester=requester,
    )
