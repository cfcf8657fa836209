"""
Plan: acciones, proyección de hechos, Diff Engine y presentación del plan.

Lógica pura; sin I/O ni dependencias de CLI o providers.
"""

from hostplane.core.plan.actions import Action, ActionKind, Subsystem, SUBSYSTEM_ORDER
from hostplane.core.plan.facts import project, flatten, managed_keys
from hostplane.core.plan.differ import compute_actions
from hostplane.core.plan.planner import PlanResult, plan, plan_lines, summarize

__all__ = [
    "Action",
    "ActionKind",
    "Subsystem",
    "SUBSYSTEM_ORDER",
    "project",
    "flatten",
    "managed_keys",
    "compute_actions",
    "PlanResult",
    "plan",
    "plan_lines",
    "summarize",
]
