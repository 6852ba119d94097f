"""Shared fixtures for CLI tests.

Every invocation runs against a fresh ``--state-dir`` under ``tmp_path``
with small catalog, index and requirements files on disk.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest
from click.testing import CliRunner, Result

from lockstep.cli.main import cli
from lockstep.workspace import Workspace


@pytest.fixture
def runner() -> CliRunner:
    """Create a Click CliRunner for invoking commands."""
    return CliRunner()


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    return tmp_path / "state"


@pytest.fixture
def invoke(runner: CliRunner, state_dir: Path) -> Callable[..., Result]:
    """Run ``lockstep --state-dir <tmp> <args>``."""

    def _invoke(*args: str) -> Result:
        return runner.invoke(cli, ["--state-dir", str(state_dir), *args])

    return _invoke


@pytest.fixture
def workspace_at(state_dir: Path) -> Callable[[], Workspace]:
    """Open the CLI's state directory directly, for assertions."""
    return lambda: Workspace.open(state_dir)


@pytest.fixture
def platform_file(tmp_path: Path) -> Path:
    path = tmp_path / "platform.yaml"
    path.write_text("numpy: 1.24.0\nrequests: 2.28.0\n", encoding="utf-8")
    return path


@pytest.fixture
def index_file(tmp_path: Path) -> Path:
    path = tmp_path / "index.yaml"
    path.write_text(
        "numpy:\n"
        "  '1.22.0': []\n"
        "  '1.24.0': []\n"
        "  '1.26.0': []\n"
        "requests:\n"
        "  '2.28.0': ['urllib3>=1.21.1,<1.27', 'certifi']\n"
        "urllib3:\n"
        "  '1.26.18': []\n"
        "certifi:\n"
        "  '2024.2.2': []\n"
        "libA:\n"
        "  '2.0': []\n"
        "  '3.0': []\n",
        encoding="utf-8",
    )
    return path


@pytest.fixture
def requirements_file(tmp_path: Path) -> Callable[[str, str], Path]:
    """Write a requirements file named after its module."""

    def _write(module: str, text: str) -> Path:
        path = tmp_path / f"{module}.in"
        path.write_text(text, encoding="utf-8")
        return path

    return _write


@pytest.fixture
def released(
    invoke: Callable[..., Result],
    platform_file: Path,
    index_file: Path,
    requirements_file: Callable[[str, str], Path],
    workspace_at: Callable[[], Workspace],
) -> Callable[[str], str]:
    """Ingest a catalog, resolve analytics.in and create a release per call."""

    def _release(source_ref: str) -> str:
        if not workspace_at().catalogs.revisions():
            assert invoke("catalog", "ingest", "2024.06", str(platform_file)).exit_code == 0
        reqs = requirements_file("analytics", "numpy<=1.26.0\n")
        assert invoke("resolve", str(reqs), "--index", str(index_file)).exit_code == 0
        artifact_id = workspace_at().artifacts.ids()[0]
        result = invoke("release", "create", source_ref, artifact_id)
        assert result.exit_code == 0, result.output
        return result.output.strip().splitlines()[-1]

    return _release
