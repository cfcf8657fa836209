"""
Base opcional para backends: despacho por categoría y por tipo de acción.

Los backends pueden heredar de aquí (probe_<categoría>, apply_<tipo>) o implementar
solo el contrato (Protocol).
"""

from typing import Any, Dict, Tuple

from hostplane.core.errors import ProbeError
from hostplane.core.infra.contracts import PROBE_CATEGORIES
from hostplane.core.plan.actions import Action
from hostplane.core.runtime.state import HostIdentity

# Categorías que solo existen en hosts Linux (systemd, /proc, pwd/grp)
LINUX_ONLY = frozenset({"module", "service", "user", "member"})


class BaseBackend:
    """Base opcional para backends; no obligatorio usar herencia."""

    name: str = "base"

    @property
    def categories(self) -> Tuple[str, ...]:
        return tuple(c for c in PROBE_CATEGORIES if hasattr(self, f"probe_{c}"))

    def applicable(self, category: str, identity: HostIdentity) -> bool:
        """Por defecto: las categorías Linux solo aplican en Linux."""
        return category not in LINUX_ONLY or identity.system == "Linux"

    def probe(self, category: str) -> Dict[str, Any]:
        handler = getattr(self, f"probe_{category}", None)
        if handler is None:
            raise ProbeError(category, f"el backend '{self.name}' no sondea esta categoría")
        return handler()

    def apply(self, action: Action) -> None:
        handler = getattr(self, "apply_" + action.kind.value.replace("-", "_"), None)
        if handler is None:
            raise NotImplementedError(f"el backend '{self.name}' no soporta {action.kind.value}")
        handler(action)
