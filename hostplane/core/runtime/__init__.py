"""
Runtime: resolución de rutas/configuración y snapshot del estado observado.

El estado persistente NUNCA vive dentro del repo; se escribe en /var/lib/hostplane/.
"""

from hostplane.core.runtime.resolver import RuntimeSettings, load_settings, state_root, descriptor_path
from hostplane.core.runtime.state import UNKNOWN, MISSING, HostIdentity, ObservedState

__all__ = [
    "RuntimeSettings",
    "load_settings",
    "state_root",
    "descriptor_path",
    "UNKNOWN",
    "MISSING",
    "HostIdentity",
    "ObservedState",
]
