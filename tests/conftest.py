"""Shared fixtures for lockstep tests."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone

import pytest

from lockstep.config import LockstepConfig
from lockstep.core.dependency import InMemoryIndex, RequirementSet
from lockstep.core.promotion import Gate, PromotionRecord, PromotionState
from lockstep.core.store import Release
from lockstep.workspace import Workspace


class FakeClock:
    """Deterministic, manually advanced clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def small_index() -> InMemoryIndex:
    """A registry snapshot with a few realistic packages.

    - numpy 1.22.0 / 1.24.0 / 1.26.0 (no dependencies)
    - requests 2.28.0 -> urllib3<1.27, certifi; 2.31.0 -> urllib3<3, certifi
    - urllib3 1.26.18 / 2.0.7, certifi 2024.2.2
    - liba 2.0 / 3.0
    """
    return InMemoryIndex.from_dict({
        "numpy": {"1.22.0": [], "1.24.0": [], "1.26.0": []},
        "requests": {
            "2.28.0": ["urllib3>=1.21.1,<1.27", "certifi>=2017.4.17"],
            "2.31.0": ["urllib3>=1.21.1,<3", "certifi>=2017.4.17"],
        },
        "urllib3": {"1.26.18": [], "2.0.7": []},
        "certifi": {"2024.2.2": []},
        "libA": {"2.0": [], "3.0": []},
    })


@pytest.fixture
def workspace(clock: FakeClock) -> Workspace:
    """In-memory workspace with the default dev -> staging -> prod chain."""
    return Workspace.open(None, LockstepConfig(), clock=clock)


@pytest.fixture
def make_release(
    workspace: Workspace, small_index: InMemoryIndex
) -> Callable[..., Release]:
    """Resolve *requirements* and create a release for *source_ref*."""

    def _make(source_ref: str, requirements: Iterable[str] = ("numpy",)) -> Release:
        if workspace.catalog() is None:
            workspace.ingest_catalog(
                "2024.06", [("numpy", "1.24.0"), ("requests", "2.28.0")]
            )
        reqs = RequirementSet.from_lines("app", list(requirements))
        artifact_id, _ = workspace.resolve([reqs], small_index)
        return workspace.create_release(source_ref, artifact_id)

    return _make


@pytest.fixture
def pass_gates(workspace: Workspace) -> Callable[[str, str], PromotionRecord]:
    """Signal a pass for every pending gate of a promotion."""

    def _pass(release_id: str, environment: str) -> PromotionRecord:
        record = workspace.engine.record(release_id, environment)
        for gate in (Gate.UNIT, Gate.INTEGRATION, Gate.SMOKE):
            if record.pending_gate is not gate:
                break
            record = workspace.engine.signal_gate(release_id, environment, gate, "pass")
        return record

    return _pass


@pytest.fixture
def deploy(
    workspace: Workspace, pass_gates: Callable[[str, str], PromotionRecord]
) -> Callable[..., PromotionRecord]:
    """Promote a release to full through every environment in *path*."""

    def _deploy(
        release_id: str, path: Iterable[str] = ("dev", "staging", "prod")
    ) -> PromotionRecord:
        record: PromotionRecord | None = None
        for environment in path:
            workspace.engine.promote(release_id, environment, requested_by="tester")
            record = pass_gates(release_id, environment)
            if record.state is PromotionState.CANARY:
                record = workspace.engine.confirm(release_id, environment, "manual")
        assert record is not None
        return record

    return _deploy
