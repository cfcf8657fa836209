"""
Acciones: unidades de cambio sobre el host y su orden de precedencia.
"""

from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, Field


class Subsystem(str, Enum):
    """Subsistemas en orden de precedencia fijo (kernel/boot → drivers → ... → entorno)."""
    BOOT = "boot"
    DRIVERS = "drivers"
    NETWORK = "network"
    USERS = "users"
    SERVICES = "services"
    PACKAGES = "packages"
    ENVIRONMENT = "environment"


SUBSYSTEM_ORDER: Tuple[Subsystem, ...] = tuple(Subsystem)


class ActionKind(str, Enum):
    INSTALL = "install"
    REMOVE = "remove"
    ENABLE_SERVICE = "enable-service"
    DISABLE_SERVICE = "disable-service"
    SET_CONFIG = "set-config"
    WRITE_FILE = "write-file"
    SET_ENV = "set-env"
    UNSET_ENV = "unset-env"
    LOAD_MODULE = "load-module"
    UNLOAD_MODULE = "unload-module"
    CREATE_USER = "create-user"
    MODIFY_USER = "modify-user"
    REMOVE_USER = "remove-user"
    ADD_GROUP = "add-group"
    REMOVE_GROUP = "remove-group"


# Categoría de hecho (prefijo de clave) que toca cada tipo de acción
KIND_CATEGORY: Dict[ActionKind, str] = {
    ActionKind.INSTALL: "package",
    ActionKind.REMOVE: "package",
    ActionKind.ENABLE_SERVICE: "service",
    ActionKind.DISABLE_SERVICE: "service",
    ActionKind.SET_CONFIG: "config",
    ActionKind.WRITE_FILE: "file",
    ActionKind.SET_ENV: "env",
    ActionKind.UNSET_ENV: "env",
    ActionKind.LOAD_MODULE: "module",
    ActionKind.UNLOAD_MODULE: "module",
    ActionKind.CREATE_USER: "user",
    ActionKind.MODIFY_USER: "user",
    ActionKind.REMOVE_USER: "user",
    ActionKind.ADD_GROUP: "member",
    ActionKind.REMOVE_GROUP: "member",
}

# Orden dentro de una misma declaración: crear antes de habilitar, habilitar antes de configurar,
# usuario antes que sus grupos; en remociones, grupos antes que el usuario.
KIND_RANK: Dict[ActionKind, int] = {
    ActionKind.INSTALL: 0,
    ActionKind.CREATE_USER: 0,
    ActionKind.LOAD_MODULE: 0,
    ActionKind.MODIFY_USER: 1,
    ActionKind.ENABLE_SERVICE: 1,
    ActionKind.DISABLE_SERVICE: 1,
    ActionKind.SET_CONFIG: 2,
    ActionKind.WRITE_FILE: 2,
    ActionKind.SET_ENV: 3,
    ActionKind.ADD_GROUP: 4,
    ActionKind.REMOVE_GROUP: 5,
    ActionKind.UNSET_ENV: 5,
    ActionKind.UNLOAD_MODULE: 5,
    ActionKind.REMOVE: 6,
    ActionKind.REMOVE_USER: 7,
}


def fact_key(category: str, identifier: str) -> str:
    return f"{category}:{identifier}"


def split_key(key: str) -> Tuple[str, str]:
    category, _, identifier = key.partition(":")
    return category, identifier


class Action(BaseModel):
    """Cambio unitario: tipo, subsistema, objetivo y valores antes/después."""
    kind: ActionKind
    subsystem: Subsystem
    target: str = Field(..., description="Identificador sin categoría (ej: ollama, ollama.host)")
    before: Any = None
    after: Any = None
    channel: Optional[str] = Field(None, description="Canal del paquete (solo install)")

    class Config:
        frozen = True

    @property
    def category(self) -> str:
        return KIND_CATEGORY[self.kind]

    @property
    def key(self) -> str:
        """Clave del hecho que modifica (categoría:identificador)."""
        return fact_key(self.category, self.target)

    def describe(self) -> str:
        """Descripción legible para CLI."""
        kind = self.kind.value
        if self.kind in (ActionKind.SET_CONFIG, ActionKind.SET_ENV, ActionKind.MODIFY_USER):
            return f"{kind} {self.target}: {_short(self.before)} → {_short(self.after)}"
        if self.kind == ActionKind.WRITE_FILE:
            return f"{kind} {self.target}" + (" (eliminar)" if self.after is None else "")
        if self.kind == ActionKind.INSTALL and self.channel:
            return f"{kind} {self.target} (canal {self.channel})"
        return f"{kind} {self.target}"


def _short(value: Any, limit: int = 60) -> str:
    text = "∅" if value is None else str(value)
    return text if len(text) <= limit else text[: limit - 1] + "…"
