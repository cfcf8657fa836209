"""
Contratos y base para backends de host.

Los backends (system, sandbox) implementan estos contratos;
el core no depende de ningún backend concreto.
"""

from hostplane.core.infra.contracts import HostBackend, PROBE_CATEGORIES
from hostplane.core.infra.base import BaseBackend

__all__ = ["HostBackend", "PROBE_CATEGORIES", "BaseBackend"]
