"""Version catalog: what a platform revision ships pre-installed."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from lockstep.core.dependency.constraints import (
    VersionConstraint,
    ceiling,
    normalize_name,
    parse_version,
)
from lockstep.core.timeutil import from_iso, utcnow
from lockstep.exceptions import MalformedRequirement


@dataclass(frozen=True)
class VersionCatalog:
    """Immutable record of the packages one platform revision provides.

    Attributes:
        revision: Platform revision identifier (e.g. "14.3").
        entries: ``(name, version)`` pairs in ingestion order; names are
            canonical and unique.
        created_at: When the revision was ingested.
    """

    revision: str
    entries: tuple[tuple[str, str], ...]
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_pairs(
        cls,
        revision: str,
        pairs: Iterable[tuple[str, str]],
        created_at: datetime | None = None,
    ) -> VersionCatalog:
        """Build a catalog, keeping the last version declared for a name.

        Raises:
            MalformedRequirement: On an empty revision, empty name or
                invalid version.
        """
        if not revision or not revision.strip():
            raise MalformedRequirement("Platform revision identifier is empty")
        merged: dict[str, str] = {}
        for name, version in pairs:
            if not name or not str(name).strip():
                raise MalformedRequirement(f"Catalog entry with empty name in {revision!r}")
            try:
                parse_version(str(version))
            except ValueError as exc:
                raise MalformedRequirement(
                    f"Catalog {revision!r}: {name}: {exc}"
                ) from exc
            canonical = normalize_name(str(name))
            merged.pop(canonical, None)
            merged[canonical] = str(version).strip()
        return cls(
            revision=revision.strip(),
            entries=tuple(merged.items()),
            created_at=created_at or utcnow(),
        )

    @property
    def requester(self) -> str:
        return f"catalog:{self.revision}"

    def version_of(self, name: str) -> str | None:
        canonical = normalize_name(name)
        for entry_name, version in self.entries:
            if entry_name == canonical:
                return version
        return None

    def ceilings(self) -> dict[str, VersionConstraint]:
        """Return ``name -> <=version`` for every entry."""
        return {name: ceiling(version) for name, version in self.entries}

    def __len__(self) -> int:
        return len(self.entries)

    def to_dict(self) -> dict[str, Any]:
        return {
            "revision": self.revision,
            "created_at": self.created_at.isoformat(),
            "entries": [[name, version] for name, version in self.entries],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VersionCatalog:
        return cls(
            revision=data["revision"],
            entries=tuple((n, v) for n, v in data.get("entries", [])),
            created_at=from_iso(data.get("created_at")) or utcnow(),
        )
