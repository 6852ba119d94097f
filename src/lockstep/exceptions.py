"""Lockstep exception hierarchy.

All public exceptions inherit from LockstepError, giving callers a single
base class to catch when they want to handle any Lockstep-specific failure
without swallowing unrelated errors.

Compiler and resolver errors are pure computation failures: retrying them
without changing the inputs yields the same failure. Promotion errors such as
``PromotionInProgress`` and ``StaleEnvironmentState`` are retryable after the
caller re-reads the current state, and ``RegistryUnavailable`` once the
registry answers again.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from lockstep.core.dependency.resolver import ConflictReport


class LockstepError(Exception):
    """Base exception for all Lockstep errors."""


class ConfigError(LockstepError):
    """Raised when a configuration file is unreadable or invalid."""


# ---------------------------------------------------------------------------
# Constraint compilation
# ---------------------------------------------------------------------------


class ConstraintError(LockstepError):
    """Base class for failures while compiling a constraint set."""


class MalformedRequirement(ConstraintError):
    """Raised when a requirement or version string cannot be parsed.

    Covers unknown operators, empty package names and version strings that
    are not valid PEP 440 versions.
    """


class CeilingExceeded(ConstraintError):
    """Raised when a direct requirement asks for more than the platform ships.

    This is a caller-visible signal that a platform revision bump is needed:
    direct requirements may tighten a catalog ceiling but never widen it.

    Attributes:
        name: Package name.
        requested: The requested constraint, as written.
        ceiling: The catalog version acting as the ceiling.
    """

    def __init__(self, name: str, requested: str, ceiling: str) -> None:
        self.name = name
        self.requested = requested
        self.ceiling = ceiling
        super().__init__(
            f"{name}{requested} exceeds the platform ceiling {name}<={ceiling}; "
            f"a platform revision bump is required"
        )


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


class ResolutionError(LockstepError):
    """Raised when dependency resolution fails.

    Covers unsatisfiable version constraints and undeclared dependency
    cycles.
    """


class ResolutionConflict(ResolutionError):
    """Raised when no pinned version set satisfies every requester.

    Attributes:
        report: The ``ConflictReport`` naming the package, its requesters
            and their constraints.
    """

    def __init__(self, report: ConflictReport) -> None:
        self.report = report
        super().__init__(report.describe())


class DependencyCycleError(ResolutionError):
    """Raised when resolved packages form a cycle not declared as allowed.

    Attributes:
        cycle: The package names forming the cycle, first name repeated last.
    """

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__(
            "Undeclared dependency cycle: " + " -> ".join(cycle)
        )


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class RegistryUnavailable(LockstepError):
    """Raised when package metadata could not be fetched.

    Unlike resolution failures this is transient: the same request may
    succeed later. No lock artifact is recorded when it is raised.

    Attributes:
        url: The request that failed.
        reason: Short description (``timeout``, ``HTTP 503``, ...).
    """

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Package registry unavailable ({reason}): {url}")


# ---------------------------------------------------------------------------
# Catalogs, artifacts, releases
# ---------------------------------------------------------------------------


class CatalogError(LockstepError):
    """Base class for version catalog failures."""


class DuplicateRevision(CatalogError):
    """Raised when a platform revision identifier has already been ingested."""


class NotFound(LockstepError, LookupError):
    """Raised when an artifact, release, catalog or environment is unknown."""


class DuplicateRelease(LockstepError):
    """Raised when a release id is reused for different content."""


class StorageError(LockstepError):
    """Raised when a persistent write fails.

    The write is all-or-nothing: when this is raised the previous document
    is still intact.
    """


# ---------------------------------------------------------------------------
# Promotion
# ---------------------------------------------------------------------------


class PromotionError(LockstepError):
    """Base class for promotion engine failures."""


class PromotionInProgress(PromotionError):
    """Raised when an environment already has an active promotion."""


class StaleEnvironmentState(PromotionError):
    """Raised when an environment binding changed since it was read.

    The caller should re-read the environment and retry the transition.
    """


class InvalidTransition(PromotionError):
    """Raised when a transition is not legal from the current state."""


class ConfirmationRejected(InvalidTransition):
    """Raised when a canary confirmation method is not allowed by the risk tier."""


class UpstreamNotPromoted(InvalidTransition):
    """Raised when a release has not yet reached full rollout upstream."""


class DrillNotPermitted(InvalidTransition):
    """Raised when a rollback drill targets production or a running canary."""


class GateFailed(PromotionError):
    """Raised to surface a failed validation gate to the requester.

    Attributes:
        release_id: The release whose gate failed.
        environment: The target environment.
        gate: The gate name ("unit", "integration" or "smoke").
    """

    def __init__(self, release_id: str, environment: str, gate: str) -> None:
        self.release_id = release_id
        self.environment = environment
        self.gate = gate
        super().__init__(self._message())

    def _message(self) -> str:
        return (
            f"Gate {self.gate!r} failed for release {self.release_id!r} "
            f"in {self.environment!r}"
        )


class GateTimeout(GateFailed):
    """Raised when a validation gate did not report before its deadline."""

    def _message(self) -> str:
        return (
            f"Gate {self.gate!r} timed out for release {self.release_id!r} "
            f"in {self.environment!r}"
        )
