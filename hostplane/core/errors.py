"""
Errores de hostplane.

El core solo define excepciones; las capas (CLI) se encargan del formato de salida.
Cada clase lleva el código de salida que la CLI devuelve al operador.
"""

from typing import Any, List, Optional


class HostplaneError(Exception):
    """Error base de hostplane."""
    exit_code = 1


class ParseError(HostplaneError):
    """Descriptor con sintaxis inválida (YAML mal formado o documento no mapeable)."""
    exit_code = 2

    def __init__(self, message: str, source: str = "<descriptor>", line: Optional[int] = None, column: Optional[int] = None):
        self.source = source
        self.line = line
        self.column = column
        where = source
        if line is not None:
            where = f"{source}:{line}" + (f":{column}" if column is not None else "")
        super().__init__(f"{where}: {message}")


class ValidationError(HostplaneError):
    """Descriptor sintácticamente correcto pero semánticamente inválido."""
    exit_code = 3

    def __init__(self, errors: List[str], source: str = "<descriptor>"):
        self.errors = list(errors)
        self.source = source
        detail = "; ".join(self.errors) if self.errors else "descriptor inválido"
        super().__init__(f"{source}: {detail}")


class ProbeError(HostplaneError):
    """Fallo de un probe de subsistema. Se absorbe como estado Unknown."""
    exit_code = 1

    def __init__(self, category: str, cause: Any):
        self.category = category
        self.cause = cause
        super().__init__(f"probe '{category}' falló: {cause}")


class ActionError(HostplaneError):
    """
    Fallo de una acción a mitad de ejecución.
    El host queda en estado mixto entre la generación anterior y la nueva.
    """
    exit_code = 4

    def __init__(self, target: str, cause: Any, record: Any = None):
        self.target = target
        self.cause = cause
        self.record = record
        super().__init__(f"acción sobre '{target}' falló: {cause}")


class LockError(HostplaneError):
    """Otra reconciliación mantiene el lock del Generation Store."""
    exit_code = 5


class RunCancelled(HostplaneError):
    """La ejecución fue cancelada por el operador."""
    exit_code = 6

    def __init__(self, message: str = "ejecución cancelada", record: Any = None):
        self.record = record
        super().__init__(message)


class ConfigError(HostplaneError):
    """Error de configuración (archivo faltante, variable de entorno inválida)."""
    exit_code = 7


class GenerationNotFound(HostplaneError):
    """La generación pedida no existe en el store."""
    exit_code = 8

    def __init__(self, generation_id: int):
        self.generation_id = generation_id
        super().__init__(f"generación {generation_id} no encontrada")
