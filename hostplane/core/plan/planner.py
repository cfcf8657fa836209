"""
Planificación: presenta el plan de cambios (qué se aplicaría) sin ejecutar.

Lógica pura: entrada = estado deseado + estado observado;
salida = plan con acciones y resumen. La ejecución la hace el engine.
"""

from typing import Dict, List

from hostplane.core.descriptor.models import DesiredState
from hostplane.core.plan.actions import SUBSYSTEM_ORDER, Action, Subsystem
from hostplane.core.plan.differ import compute_actions
from hostplane.core.runtime.state import ObservedState


class PlanResult:
    """Resultado de un plan (qué se aplicaría) sin ejecutar."""
    def __init__(
        self,
        desired: DesiredState,
        observed: ObservedState,
        actions: List[Action],
    ):
        self.desired = desired
        self.observed = observed
        self.actions = actions
        self.desired_hash = desired.content_hash()

    @property
    def empty(self) -> bool:
        return not self.actions

    @property
    def summary(self) -> str:
        if not self.actions:
            return "Sin cambios: el host coincide con el estado deseado"
        counts = summarize(self.actions)
        parts = [f"{s.value}={n}" for s, n in counts.items()]
        return f"{len(self.actions)} acciones ({', '.join(parts)})"


def summarize(actions: List[Action]) -> Dict[Subsystem, int]:
    """Cuenta acciones por subsistema, en orden de precedencia."""
    counts: Dict[Subsystem, int] = {}
    for subsystem in SUBSYSTEM_ORDER:
        n = sum(1 for a in actions if a.subsystem == subsystem)
        if n:
            counts[subsystem] = n
    return counts


def plan(desired: DesiredState, observed: ObservedState) -> PlanResult:
    return PlanResult(desired, observed, compute_actions(desired, observed))


def plan_lines(actions: List[Action]) -> List[str]:
    """
    Convierte una lista de acciones en líneas legibles (para mostrar en CLI).
    No ejecuta nada.
    """
    return [f"{i}. [{a.subsystem.value}] {a.describe()}" for i, a in enumerate(actions, 1)]
