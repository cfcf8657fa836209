"""
Backends de host: implementan hostplane.core.infra.HostBackend.
"""

from typing import Optional

from rich.console import Console

from hostplane.core.errors import ConfigError
from hostplane.core.infra.contracts import HostBackend
from hostplane.core.runtime.resolver import RuntimeSettings
from hostplane.providers.sandbox import SandboxBackend
from hostplane.providers.system import SystemBackend


def get_backend(settings: RuntimeSettings, console: Optional[Console] = None) -> HostBackend:
    """Backend según la configuración (HOSTPLANE_BACKEND)."""
    if settings.backend == "sandbox":
        return SandboxBackend(settings.sandbox_path(), console=console)
    if settings.backend == "system":
        return SystemBackend(
            package_manager=settings.package_manager,
            config_dir=settings.config_dir,
            console=console,
        )
    raise ConfigError(f"backend desconocido: {settings.backend}")


__all__ = ["get_backend", "SandboxBackend", "SystemBackend"]
