"""Promotion: environment bindings, the promotion state machine and drills."""

from lockstep.core.promotion.models import (
    GATE_ORDER,
    Environment,
    Gate,
    GateResult,
    PromotionRecord,
    PromotionState,
    RollbackResult,
)
from lockstep.core.promotion.registry import EnvironmentRegistry
from lockstep.core.promotion.gates import GateCheck, GateRunner, NullGateRunner
from lockstep.core.promotion.engine import PromotionEngine
from lockstep.core.promotion.drills import DrillReport, RollbackDrill

__all__ = [
    "DrillReport",
    "Environment",
    "EnvironmentRegistry",
    "GATE_ORDER",
    "Gate",
    "GateCheck",
    "GateResult",
    "GateRunner",
    "NullGateRunner",
    "PromotionEngine",
    "PromotionRecord",
    "PromotionState",
    "RollbackDrill",
    "RollbackResult",
]
