"""
Resolución de rutas de estado y configuración de ejecución.

- state_root(): directorio canónico de estado (generaciones, lock, intentos fallidos).
- descriptor_path(): descriptor por defecto del host.
- load_settings(): RuntimeSettings desde variables de entorno (+ overrides de la CLI).

El core NO escribe en disco; solo expone estas rutas. Quién escribe (engine/providers)
debe usar state_root() para estado persistente. El .env lo carga la CLI.
"""

import os
from pathlib import Path
from typing import Any, Dict, Literal, Optional

import pydantic
from pydantic import BaseModel, Field

from hostplane.core.errors import ConfigError

# Ruta canónica del estado (fuera del repo)
HOSTPLANE_STATE_ROOT = Path("/var/lib/hostplane")
HOSTPLANE_CONFIG_DIR = Path("/etc/hostplane")

ENV_PREFIX = "HOSTPLANE_"


class RuntimeSettings(BaseModel):
    """Configuración de ejecución (variables HOSTPLANE_* y opciones de la CLI)."""
    state_root: Path = Field(HOSTPLANE_STATE_ROOT, description="Generaciones, lock e intentos fallidos")
    descriptor: Path = Field(HOSTPLANE_CONFIG_DIR / "host.yaml", description="Descriptor del host")
    backend: Literal["system", "sandbox"] = Field("system", description="Backend de host")
    sandbox_file: Optional[Path] = Field(None, description="Host simulado (default: <state_root>/sandbox.json)")
    package_manager: Literal["apt", "dnf", "pacman"] = Field("apt", description="Gestor de paquetes del host")
    config_dir: Path = Field(HOSTPLANE_CONFIG_DIR, description="Directorio de settings gestionados")
    watchdog_seconds: float = Field(600.0, gt=0, description="Intervalo del watchdog suave")
    gc_keep: int = Field(3, ge=1, description="Generaciones mínimas a conservar en gc")

    def sandbox_path(self) -> Path:
        return self.sandbox_file or (self.state_root / "sandbox.json")


_ENV_FIELDS = {
    "state_root": "STATE_ROOT",
    "descriptor": "DESCRIPTOR",
    "backend": "BACKEND",
    "sandbox_file": "SANDBOX_FILE",
    "package_manager": "PACKAGE_MANAGER",
    "config_dir": "CONFIG_DIR",
    "watchdog_seconds": "WATCHDOG_SECONDS",
    "gc_keep": "GC_KEEP",
}


def load_settings(overrides: Optional[Dict[str, Any]] = None) -> RuntimeSettings:
    """
    Construye RuntimeSettings.
    Prioridad: overrides (CLI) > variables de entorno HOSTPLANE_* > defaults.
    """
    values: Dict[str, Any] = {}
    for field_name, suffix in _ENV_FIELDS.items():
        raw = os.environ.get(ENV_PREFIX + suffix, "").strip()
        if raw:
            values[field_name] = raw
    for k, v in (overrides or {}).items():
        if v is not None:
            values[k] = v
    try:
        settings = RuntimeSettings(**values)
    except pydantic.ValidationError as e:
        detail = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        raise ConfigError(f"configuración inválida: {detail}") from e
    return settings.model_copy(update={
        "state_root": settings.state_root.expanduser(),
        "descriptor": settings.descriptor.expanduser(),
    })


def state_root() -> Path:
    """
    Directorio raíz del estado de hostplane.
    HOSTPLANE_STATE_ROOT o /var/lib/hostplane/.
    """
    return load_settings().state_root


def descriptor_path() -> Path:
    """Descriptor por defecto: HOSTPLANE_DESCRIPTOR o /etc/hostplane/host.yaml."""
    return load_settings().descriptor
