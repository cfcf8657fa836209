"""
Diff Engine: (DesiredState, ObservedState) → secuencia ordenada de acciones.

Función pura. Diff estructural por subsistema; por cada hecho, si el valor deseado
difiere del observado (o el observado es Unknown) se emite una acción. Los hechos
gestionados que ya no se declaran generan la acción inversa.

Orden: (precedencia de subsistema, orden de declaración, rango del tipo, objetivo).
Mismas entradas → misma secuencia, byte a byte.
"""

from typing import Any, Dict, List, Tuple

from hostplane.core.descriptor.models import DesiredState
from hostplane.core.plan.actions import (
    KIND_RANK,
    SUBSYSTEM_ORDER,
    Action,
    ActionKind,
    Subsystem,
    split_key,
)
from hostplane.core.plan.facts import package_channels, project
from hostplane.core.runtime.state import MISSING, UNKNOWN, ObservedState

# Las remociones van detrás de todo lo declarado en su subsistema
REMOVAL_ORDER = 1 << 30

REMOVAL_KIND: Dict[str, ActionKind] = {
    "config": ActionKind.SET_CONFIG,
    "module": ActionKind.UNLOAD_MODULE,
    "file": ActionKind.WRITE_FILE,
    "package": ActionKind.REMOVE,
    "service": ActionKind.DISABLE_SERVICE,
    "env": ActionKind.UNSET_ENV,
    "user": ActionKind.REMOVE_USER,
    "member": ActionKind.REMOVE_GROUP,
}


def _desired_kind(category: str, value: Any, observed: Any) -> ActionKind:
    if category == "service":
        return ActionKind.ENABLE_SERVICE if value else ActionKind.DISABLE_SERVICE
    if category == "user":
        return ActionKind.MODIFY_USER if observed not in (MISSING, UNKNOWN) else ActionKind.CREATE_USER
    return {
        "config": ActionKind.SET_CONFIG,
        "module": ActionKind.LOAD_MODULE,
        "file": ActionKind.WRITE_FILE,
        "package": ActionKind.INSTALL,
        "env": ActionKind.SET_ENV,
        "member": ActionKind.ADD_GROUP,
    }[category]


def needs_action(desired: Any, observed: Any) -> bool:
    """Unknown o ausente siempre requiere acción; si no, solo si difiere."""
    if observed is UNKNOWN or observed is MISSING:
        return True
    return observed != desired


def _before(observed: Any) -> Any:
    return None if observed is MISSING or observed is UNKNOWN else observed


def compute_actions(desired: DesiredState, observed: ObservedState) -> List[Action]:
    """
    Calcula el conjunto mínimo de acciones que lleva 'observed' a 'desired'.

    Args:
        desired: Estado deseado (no se modifica)
        observed: Snapshot del host, con 'managed' = hechos de la generación activa

    Returns:
        Lista de Action ordenada de forma determinista
    """
    projection = project(desired)
    channels = package_channels(desired)
    entries: List[Tuple[Tuple[int, int, int, str], Action]] = []
    declared = set()

    for rank, subsystem in enumerate(SUBSYSTEM_ORDER):
        for key, fact in projection[subsystem].items():
            declared.add(key)
            current = observed.lookup(key)
            if not needs_action(fact.value, current):
                continue
            category, target = split_key(key)
            kind = _desired_kind(category, fact.value, current)
            action = Action(
                kind=kind,
                subsystem=subsystem,
                target=target,
                before=_before(current),
                after=fact.value,
                channel=channels.get(target) if kind == ActionKind.INSTALL else None,
            )
            entries.append(((rank, fact.order, KIND_RANK[kind], target), action))

    for key, subsystem in observed.managed.items():
        if key in declared:
            continue
        current = observed.lookup(key)
        if current is MISSING:
            continue
        category, target = split_key(key)
        kind = REMOVAL_KIND[category]
        action = Action(kind=kind, subsystem=Subsystem(subsystem), target=target, before=_before(current), after=None)
        entries.append(((SUBSYSTEM_ORDER.index(Subsystem(subsystem)), REMOVAL_ORDER, KIND_RANK[kind], target), action))

    entries.sort(key=lambda entry: entry[0])
    return [action for _, action in entries]
