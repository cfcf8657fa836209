"""
Contratos que deben implementar los backends de host.

El core solo define interfaces; la implementación vive en hostplane/providers/*.
"""

from typing import Any, Dict, Protocol, Tuple

from hostplane.core.plan.actions import Action
from hostplane.core.runtime.state import HostIdentity

# Categorías de hechos en el orden fijo en que se fusionan los probes
PROBE_CATEGORIES: Tuple[str, ...] = ("config", "module", "file", "package", "service", "env", "user", "member")


class HostBackend(Protocol):
    """
    Contrato mínimo de un backend de host (sistema real, sandbox).
    No decide qué cambiar; solo observa hechos y aplica acciones unitarias.
    """
    @property
    def name(self) -> str:
        """Identificador del backend (ej: system, sandbox)."""
        ...

    @property
    def categories(self) -> Tuple[str, ...]:
        """Categorías de hechos que sabe sondear."""
        ...

    def applicable(self, category: str, identity: HostIdentity) -> bool:
        """Si el probe de 'category' tiene sentido en este host."""
        ...

    def probe(self, category: str) -> Dict[str, Any]:
        """
        Hechos observados de una categoría: identificador → valor.
        Lanza ProbeError/OSError si no puede observar la categoría.
        """
        ...

    def apply(self, action: Action) -> None:
        """Aplica una acción; cualquier excepción significa que la acción falló."""
        ...
