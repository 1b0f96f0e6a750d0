"""Plan generation for agent runs."""

from .planner import StructuredPlanner
from .steps import AgentPlan, PlanStep, PlanStore, RiskSummary, build_plan, compute_plan_hash

__all__ = [
    "AgentPlan",
    "PlanStep",
    "PlanStore",
    "RiskSummary",
    "StructuredPlanner",
    "build_plan",
    "compute_plan_hash",
]
