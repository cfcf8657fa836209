"""
Estado observado del host (snapshot inmutable).

El Diff Engine recibe este snapshot por valor; ni el Diff Engine ni el Executor
consultan el host en medio del cálculo. Nunca se persiste.
"""

import os
import platform
from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple


class _Sentinel:
    def __init__(self, name: str):
        self._name = name

    def __repr__(self) -> str:
        return self._name

    def __reduce__(self):
        return self._name


UNKNOWN = _Sentinel("UNKNOWN")
MISSING = _Sentinel("MISSING")


@dataclass(frozen=True)
class HostIdentity:
    """Variables que identifican al host; entradas de solo lectura."""
    hostname: str
    architecture: str
    system: str = "Linux"

    @classmethod
    def detect(cls) -> "HostIdentity":
        hostname = os.environ.get("HOSTPLANE_HOSTNAME") or platform.node() or "localhost"
        architecture = os.environ.get("HOSTPLANE_ARCHITECTURE") or platform.machine() or "unknown"
        return cls(hostname=hostname, architecture=architecture, system=platform.system() or "Linux")


@dataclass(frozen=True)
class ObservedState:
    """
    Estado real capturado en el momento de la reconciliación.

    facts: clave (categoría:identificador) → valor; un valor puede ser UNKNOWN.
    unknown: categorías cuyo probe falló (todos sus hechos son Unknown).
    managed: claves declaradas por la generación activa (candidatas a remoción).
    """
    facts: Mapping[str, Any] = field(default_factory=dict)
    unknown: FrozenSet[str] = frozenset()
    managed: Mapping[str, str] = field(default_factory=dict)
    warnings: Tuple[str, ...] = ()
    identity: Optional[HostIdentity] = None

    def lookup(self, key: str) -> Any:
        """Valor observado, UNKNOWN si no se pudo sondear, MISSING si no existe."""
        category = key.partition(":")[0]
        if category in self.unknown:
            return UNKNOWN
        return self.facts.get(key, MISSING)

    def is_unknown(self, key: str) -> bool:
        return self.lookup(key) is UNKNOWN

    def unknown_fields(self) -> Tuple[str, ...]:
        """Claves concretas con valor UNKNOWN (además de las categorías caídas)."""
        return tuple(sorted(k for k, v in self.facts.items() if v is UNKNOWN))

    def with_managed(self, managed: Mapping[str, str]) -> "ObservedState":
        """Copia con el conjunto de hechos gestionados (no muta el snapshot)."""
        return replace(self, managed=dict(managed))

    def restricted_to(self, keys) -> Dict[str, Any]:
        """Vista {clave: valor} de los hechos observados dentro de 'keys'."""
        wanted = set(keys)
        return {k: v for k, v in self.facts.items() if k in wanted}
