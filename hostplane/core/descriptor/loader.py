"""
Loader y parser del descriptor.
Carga YAML y lo convierte al modelo Pydantic DesiredState.

Sin efectos secundarios: solo lee el descriptor y, si lo referencia, su catálogo.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional

import pydantic
import yaml

from hostplane.core.descriptor.catalog import PackageCatalog, load_package_catalog
from hostplane.core.descriptor.models import DesiredState
from hostplane.core.descriptor.validator import validate_desired_state
from hostplane.core.errors import ConfigError, ParseError, ValidationError


def _schema_errors(exc: pydantic.ValidationError) -> List[str]:
    messages = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "<raíz>"
        messages.append(f"{loc}: {err.get('msg')}")
    return messages


def _load_yaml(text: str, source: str) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        problem = getattr(e, "problem", None) or str(e)
        if mark is not None:
            raise ParseError(problem, source=source, line=mark.line + 1, column=mark.column + 1) from e
        raise ParseError(problem, source=source) from e
    if not isinstance(data, dict):
        raise ParseError("el descriptor debe ser un mapa de secciones", source=source)
    return data


def build_desired_state(data: Dict[str, Any], source: str = "<descriptor>") -> DesiredState:
    """Valida solo el esquema (usado también al restaurar generaciones guardadas)."""
    try:
        return DesiredState.model_validate(data)
    except pydantic.ValidationError as e:
        raise ValidationError(_schema_errors(e), source=source) from e


def parse_descriptor(
    text: str,
    source: str = "<descriptor>",
    base_dir: Optional[Path] = None,
    catalog: Optional[PackageCatalog] = None,
) -> DesiredState:
    """
    Parsea el texto de un descriptor.

    Args:
        text: Contenido YAML
        source: Nombre para los mensajes de error
        base_dir: Directorio para resolver 'catalog:' relativo
        catalog: Catálogo explícito (tiene prioridad sobre 'catalog:')

    Returns:
        DesiredState validado

    Raises:
        ParseError: YAML mal formado
        ValidationError: esquema o reglas semánticas
    """
    data = _load_yaml(text, source)
    state = build_desired_state(data, source)

    if catalog is None and state.catalog:
        catalog_path = Path(state.catalog).expanduser()
        if not catalog_path.is_absolute():
            catalog_path = (base_dir or Path.cwd()) / catalog_path
        catalog = load_package_catalog(catalog_path)

    errors = validate_desired_state(state, catalog)
    if errors:
        raise ValidationError(errors, source=source)
    return state


def load_descriptor(path: Path, catalog: Optional[PackageCatalog] = None) -> DesiredState:
    """Carga un descriptor desde disco."""
    path = Path(path).expanduser()
    if not path.exists():
        raise ConfigError(f"descriptor no encontrado: {path}")
    try:
        text = path.read_text()
    except OSError as e:
        raise ConfigError(f"no se pudo leer el descriptor {path}: {e}") from e
    return parse_descriptor(text, source=str(path), base_dir=path.parent, catalog=catalog)
