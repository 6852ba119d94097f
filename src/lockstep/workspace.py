"""Workspace: one state directory with every Lockstep store wired together.

This is the embedding API and what the CLI drives::

    ws = Workspace.open(Path(".lockstep"), load_config(Path("lockstep.yaml")))
    ws.ingest_catalog("2024.06", [("numpy", "1.24.0"), ("requests", "2.28.0")])
    reqs = RequirementSet.from_lines("analytics", ["numpy<=1.26.0"])
    artifact_id, graph = ws.resolve([reqs], InMemoryIndex.read(Path("index.yaml")))
    release = ws.create_release("git:4f2a9c1", artifact_id)
    ws.engine.promote(release.id, "dev", requested_by="alice")
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path

from lockstep.config import LockstepConfig
from lockstep.core.catalog import CatalogLog, VersionCatalog
from lockstep.core.dependency import (
    ConstraintSet,
    DependencyResolver,
    PackageIndex,
    PackageRequirement,
    RequirementSet,
    compile_constraints,
)
from lockstep.core.lockgraph import LockGraph
from lockstep.core.promotion import (
    EnvironmentRegistry,
    GateRunner,
    PromotionEngine,
)
from lockstep.core.store import (
    AuditLog,
    DocumentStore,
    LockArtifactStore,
    Release,
    ReleaseStore,
)
from lockstep.core.timeutil import Clock, utcnow
from lockstep.exceptions import NotFound, ResolutionConflict

logger = logging.getLogger(__name__)


class Workspace:
    """All stores of one Lockstep state directory.

    Args:
        store: Backing document store.
        config: Loaded configuration.
        gate_runner: Collaborator starting external gates.
        clock: Time source shared by every store.
    """

    def __init__(
        self,
        store: DocumentStore,
        config: LockstepConfig | None = None,
        gate_runner: GateRunner | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self.config = config or LockstepConfig()
        self.store = store
        self.audit = AuditLog(store, clock)
        self.catalogs = CatalogLog(store, self.audit, clock)
        self.artifacts = LockArtifactStore(store, self.audit)
        self.releases = ReleaseStore(store, self.artifacts, self.audit, clock)
        self.registry = EnvironmentRegistry(store, self.audit, clock=clock)
        self.engine = PromotionEngine(
            self.registry,
            self.releases,
            store,
            self.audit,
            config=self.config,
            gate_runner=gate_runner,
            clock=clock,
        )

    @classmethod
    def open(
        cls,
        state_dir: Path | None,
        config: LockstepConfig | None = None,
        gate_runner: GateRunner | None = None,
        clock: Clock = utcnow,
    ) -> Workspace:
        """Open (creating if needed) the workspace at *state_dir*.

        ``None`` opens a throwaway in-memory workspace.
        """
        return cls(DocumentStore(state_dir), config, gate_runner, clock)

    # -- Catalogs -----------------------------------------------------------

    def ingest_catalog(
        self, revision: str, pairs: Iterable[tuple[str, str]]
    ) -> VersionCatalog:
        return self.catalogs.ingest(revision, pairs)

    def catalog(self, revision: str | None = None) -> VersionCatalog | None:
        """Return *revision*, or the latest one, or None if none exists."""
        if revision is not None:
            return self.catalogs.get(revision)
        try:
            return self.catalogs.latest()
        except NotFound:
            return None

    # -- Resolution ---------------------------------------------------------

    def compile(
        self,
        requirement_sets: Sequence[RequirementSet] | Iterable[PackageRequirement],
        revision: str | None = None,
    ) -> ConstraintSet:
        """Compile against *revision* (default: the latest platform revision)."""
        return compile_constraints(self.catalog(revision), requirement_sets)

    def resolve(
        self,
        requirement_sets: Sequence[RequirementSet] | Iterable[PackageRequirement],
        index: PackageIndex,
        revision: str | None = None,
    ) -> tuple[str, LockGraph]:
        """Compile, resolve and record a lock graph.

        Returns:
            ``(artifact_id, graph)``.

        Raises:
            CeilingExceeded: A requirement needs a platform revision bump.
            ResolutionConflict: No version set satisfies every requester.
            DependencyCycleError: The result has an undeclared cycle.
            RegistryUnavailable: The package index did not answer; no
                artifact is recorded.
        """
        constraints = self.compile(requirement_sets, revision)
        allowed = self.config.resolver.allowed_cycles
        resolution = DependencyResolver(index, allowed_cycles=allowed).resolve(
            constraints
        )
        if not resolution.success:
            raise ResolutionConflict(resolution.conflict)
        graph = LockGraph.from_resolution(resolution, constraints, allowed)
        artifact_id = self.artifacts.record(graph)
        return artifact_id, graph

    # -- Releases -----------------------------------------------------------

    def create_release(
        self, source_ref: str, lock_hash: str, release_id: str | None = None
    ) -> Release:
        return self.releases.create(source_ref, lock_hash, release_id)
