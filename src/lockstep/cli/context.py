"""Shared CLI plumbing: workspace access and exit-code mapping.

Exit Codes:
    0 - Success.
    1 - Domain failure (conflict, ceiling exceeded, halted gate, rejected
        transition).
    2 - Missing or invalid input (unknown release, environment or artifact;
        unreadable file or config).
"""

from __future__ import annotations

import functools
import sys
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import click

from lockstep.cli.output import print_error
from lockstep.config import load_config
from lockstep.exceptions import ConfigError, LockstepError, NotFound
from lockstep.workspace import Workspace


@dataclass
class CliState:
    """Global options, with the workspace opened on first use."""

    state_dir: Path
    config_path: Path | None = None
    _workspace: Workspace | None = field(default=None, repr=False)

    @property
    def workspace(self) -> Workspace:
        if self._workspace is None:
            self._workspace = Workspace.open(self.state_dir, load_config(self.config_path))
        return self._workspace


def with_workspace(func: Callable[..., Any]) -> Callable[..., Any]:
    """Pass the workspace as the first argument and map errors to exit codes."""

    @click.pass_obj
    @functools.wraps(func)
    def wrapper(state: CliState, *args: Any, **kwargs: Any) -> Any:
        try:
            return func(state.workspace, *args, **kwargs)
        except (NotFound, ConfigError) as exc:
            print_error(str(exc))
            sys.exit(2)
        except LockstepError as exc:
            print_error(str(exc))
            sys.exit(1)

    return wrapper
