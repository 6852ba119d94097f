"""Lockstep configuration.

Configuration is a YAML document loaded into frozen dataclasses. It is
declarative and deterministic: the same file always yields the same
settings, and structural problems raise ``ConfigError`` instead of being
guessed around. A missing file means the defaults below.

Example ``lockstep.yaml``::

    canary:
      enabled: true
      percent: 5
    gates:
      timeouts: {unit: 1800, integration: 3600, smoke: 900}   # seconds
    resolver:
      allowed_cycles:
        - [sphinx, sphinxcontrib-applehelp]
    environments:
      dev:     {risk_tier: standard}
      staging: {risk_tier: standard, requires: dev}
      prod:    {risk_tier: high, requires: staging, production: true}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

from lockstep.exceptions import ConfigError, NotFound

logger = logging.getLogger(__name__)

GATE_NAMES: tuple[str, ...] = ("unit", "integration", "smoke")

# Approval methods accepted to confirm a canary, per environment risk tier.
APPROVAL_METHODS: dict[str, frozenset[str]] = {
    "standard": frozenset({"manual", "health_check"}),
    "high": frozenset({"manual"}),
}

DEFAULT_CANARY_PERCENT = 5
RECOMMENDED_CANARY_RANGE = (5, 10)

DEFAULT_GATE_TIMEOUTS: dict[str, float] = {
    "unit": 1800.0,
    "integration": 3600.0,
    "smoke": 900.0,
}


@dataclass(frozen=True)
class CanarySettings:
    enabled: bool = True
    percent: int = DEFAULT_CANARY_PERCENT


@dataclass(frozen=True)
class GateSettings:
    """Per-gate timeouts, in seconds."""

    timeouts: dict[str, float] = field(
        default_factory=lambda: dict(DEFAULT_GATE_TIMEOUTS)
    )

    def timeout(self, gate: str) -> timedelta:
        return timedelta(seconds=self.timeouts[gate])


@dataclass(frozen=True)
class ResolverSettings:
    allowed_cycles: tuple[tuple[str, ...], ...] = ()


@dataclass(frozen=True)
class EnvironmentSettings:
    """How one environment accepts promotions.

    Attributes:
        name: Environment name.
        risk_tier: "standard" or "high"; decides which confirmation
            methods may complete a canary.
        requires: Upstream environment a release must have fully reached
            first, or None.
        production: Production environments refuse rollback drills.
        canary: Per-environment override of ``canary.enabled``.
    """

    name: str
    risk_tier: str = "standard"
    requires: str | None = None
    production: bool = False
    canary: bool | None = None

    @property
    def approval_methods(self) -> frozenset[str]:
        return APPROVAL_METHODS[self.risk_tier]


def _default_environments() -> dict[str, EnvironmentSettings]:
    return {
        "dev": EnvironmentSettings("dev"),
        "staging": EnvironmentSettings("staging", requires="dev"),
        "prod": EnvironmentSettings(
            "prod", risk_tier="high", requires="staging", production=True
        ),
    }


@dataclass(frozen=True)
class LockstepConfig:
    canary: CanarySettings = field(default_factory=CanarySettings)
    gates: GateSettings = field(default_factory=GateSettings)
    resolver: ResolverSettings = field(default_factory=ResolverSettings)
    environments: dict[str, EnvironmentSettings] = field(
        default_factory=_default_environments
    )

    def environment(self, name: str) -> EnvironmentSettings:
        try:
            return self.environments[name]
        except KeyError:
            raise NotFound(f"Unknown environment {name!r}") from None

    def canary_enabled_for(self, name: str) -> bool:
        override = self.environment(name).canary
        return self.canary.enabled if override is None else override


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_config(path: Path | None) -> LockstepConfig:
    """Load configuration from *path*, or defaults if it is None or missing.

    Raises:
        ConfigError: If the file is not valid YAML or fails validation.
    """
    if path is None or not path.exists():
        return LockstepConfig()
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot read config {path}: {exc}") from exc
    config = config_from_dict(data or {})
    logger.info("Loaded config %s (%d environments)", path, len(config.environments))
    return config


def config_from_dict(data: dict[str, Any]) -> LockstepConfig:
    """Build and validate a ``LockstepConfig`` from a parsed document."""
    if not isinstance(data, dict):
        raise ConfigError("Config root must be a mapping")

    canary = _parse_canary(data.get("canary") or {})
    gates = _parse_gates(data.get("gates") or {})
    resolver = _parse_resolver(data.get("resolver") or {})
    if "environments" in data:
        environments = _parse_environments(data["environments"] or {})
    else:
        environments = _default_environments()

    _check_order(environments)
    return LockstepConfig(canary, gates, resolver, environments)


def _parse_canary(raw: dict[str, Any]) -> CanarySettings:
    enabled = bool(raw.get("enabled", True))
    percent = raw.get("percent", DEFAULT_CANARY_PERCENT)
    if not isinstance(percent, int) or isinstance(percent, bool) or not 1 <= percent <= 99:
        raise ConfigError(f"canary.percent must be an integer in 1..99, got {percent!r}")
    low, high = RECOMMENDED_CANARY_RANGE
    if not low <= percent <= high:
        logger.warning(
            "canary.percent=%d is outside the recommended %d..%d range",
            percent, low, high,
        )
    return CanarySettings(enabled=enabled, percent=percent)


def _parse_gates(raw: dict[str, Any]) -> GateSettings:
    timeouts = dict(DEFAULT_GATE_TIMEOUTS)
    for gate, seconds in (raw.get("timeouts") or {}).items():
        if gate not in GATE_NAMES:
            raise ConfigError(f"Unknown gate {gate!r} in gates.timeouts")
        if not isinstance(seconds, (int, float)) or isinstance(seconds, bool) or seconds <= 0:
            raise ConfigError(f"gates.timeouts.{gate} must be a positive number")
        timeouts[gate] = float(seconds)
    return GateSettings(timeouts)


def _parse_resolver(raw: dict[str, Any]) -> ResolverSettings:
    groups = raw.get("allowed_cycles") or []
    if not isinstance(groups, list) or not all(isinstance(g, list) for g in groups):
        raise ConfigError("resolver.allowed_cycles must be a list of name lists")
    from lockstep.core.dependency.constraints import normalize_name

    return ResolverSettings(
        tuple(tuple(sorted(normalize_name(str(n)) for n in g)) for g in groups)
    )


def _parse_environments(raw: dict[str, Any]) -> dict[str, EnvironmentSettings]:
    if not isinstance(raw, dict) or not raw:
        raise ConfigError("environments must be a non-empty mapping")
    environments: dict[str, EnvironmentSettings] = {}
    for name, spec in raw.items():
        spec = spec or {}
        tier = spec.get("risk_tier", "standard")
        if tier not in APPROVAL_METHODS:
            raise ConfigError(
                f"environments.{name}.risk_tier must be one of "
                f"{sorted(APPROVAL_METHODS)}, got {tier!r}"
            )
        canary = spec.get("canary")
        environments[str(name)] = EnvironmentSettings(
            name=str(name),
            risk_tier=tier,
            requires=spec.get("requires"),
            production=bool(spec.get("production", False)),
            canary=None if canary is None else bool(canary),
        )
    return environments


def _check_order(environments: dict[str, EnvironmentSettings]) -> None:
    for env in environments.values():
        if env.requires is not None and env.requires not in environments:
            raise ConfigError(
                f"environments.{env.name}.requires names unknown environment "
                f"{env.requires!r}"
            )
    for env in environments.values():
        seen = {env.name}
        upstream = env.requires
        while upstream is not None:
            if upstream in seen:
                raise ConfigError(
                    f"Promotion order cycle involving {env.name!r}"
                )
            seen.add(upstream)
            upstream = environments[upstream].requires
