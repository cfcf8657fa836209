"""
Core: lógica de reconciliación pura.

ENFORCEMENT (arquitectura limpia):
- Este paquete NO debe importar: hostplane.cli, hostplane.engine, hostplane.providers.
- Permitido: typing, pathlib.Path, pydantic, yaml, hostplane.core.*
- La única lectura de disco del core es la del descriptor y su catálogo (loader/catalog).
- El engine, los providers y la CLI importan desde core; nunca al revés.
"""

from hostplane.core.errors import (
    HostplaneError,
    ParseError,
    ValidationError,
    ProbeError,
    ActionError,
    LockError,
    RunCancelled,
    ConfigError,
    GenerationNotFound,
)

__all__ = [
    "HostplaneError",
    "ParseError",
    "ValidationError",
    "ProbeError",
    "ActionError",
    "LockError",
    "RunCancelled",
    "ConfigError",
    "GenerationNotFound",
]
