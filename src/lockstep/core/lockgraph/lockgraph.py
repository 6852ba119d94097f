"""LockGraph core class: pinned packages, content hash and serialization.

Determinism guarantee: ``to_dict()`` and ``to_json()`` sort packages by name
and sort every dictionary key, so two graphs with the same content always
produce byte-identical JSON. The content hash covers only the sorted
``name==version`` pairs: provenance and edges describe a graph but do not
change its identity.

A LockGraph has no mutating methods. Once built it is the value that gets
recorded, deployed and rolled back to.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

from lockstep.core.lockgraph.models import LockedPackage, LockProvenance


class LockGraph:
    """A fully resolved, pinned set of package versions to deploy together.

    Example::

        graph = LockGraph([LockedPackage("numpy", "1.24.0")])
        graph.content_hash   # "sha256:..."
        graph.write(Path("lock.json"))
    """

    LOCK_FORMAT_VERSION: str = "1.0"
    HASH_ALGORITHM: str = "sha256"

    def __init__(
        self,
        packages: Iterable[LockedPackage] = (),
        provenance: LockProvenance | None = None,
    ) -> None:
        self._packages: dict[str, LockedPackage] = {}
        for package in packages:
            self._packages[package.name] = package
        self._provenance = provenance or LockProvenance()

    # -- Access -------------------------------------------------------------

    def get(self, name: str) -> LockedPackage | None:
        return self._packages.get(name)

    @property
    def names(self) -> list[str]:
        return sorted(self._packages)

    @property
    def package_count(self) -> int:
        return len(self._packages)

    @property
    def provenance(self) -> LockProvenance:
        return self._provenance

    def pins(self) -> dict[str, str]:
        """Return ``name -> version`` sorted by name."""
        return {name: self._packages[name].version for name in self.names}

    def __iter__(self) -> Iterator[LockedPackage]:
        return (self._packages[name] for name in self.names)

    def __len__(self) -> int:
        return len(self._packages)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LockGraph):
            return NotImplemented
        return self.content_hash == other.content_hash

    def __hash__(self) -> int:
        return hash(self.content_hash)

    # -- Identity -----------------------------------------------------------

    @staticmethod
    def compute_hash(pins: dict[str, str]) -> str:
        """Hash sorted ``name==version`` pairs into ``sha256:<hex>``."""
        body = "\n".join(f"{name}=={pins[name]}" for name in sorted(pins))
        digest = hashlib.sha256(body.encode("utf-8")).hexdigest()
        return f"sha256:{digest}"

    @property
    def content_hash(self) -> str:
        return self.compute_hash(self.pins())

    @property
    def artifact_id(self) -> str:
        return self.content_hash

    # -- Serialization ------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        packages: dict[str, Any] = {}
        for package in self:
            packages[package.name] = {
                "version": package.version,
                "dependencies": dict(sorted(package.dependencies.items())),
                "shipped": package.shipped,
            }
        prov = self._provenance
        return {
            "lock_format_version": self.LOCK_FORMAT_VERSION,
            "content_hash": self.content_hash,
            "packages": packages,
            "provenance": {
                "platform_revision": prov.platform_revision,
                "constraints_fingerprint": prov.constraints_fingerprint,
                "constraints": dict(sorted(prov.constraints.items())),
                "resolver_version": prov.resolver_version,
                "allowed_cycles": [sorted(group) for group in prov.allowed_cycles],
                "cycles": [list(cycle) for cycle in prov.cycles],
            },
        }

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True)

    def write(self, path: Path) -> None:
        """Write the graph to disk as JSON, creating parent directories."""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.to_json(), encoding="utf-8")

    def __repr__(self) -> str:
        return f"LockGraph({self.content_hash[:19]}..., packages={len(self)})"
