"""
Catálogo de paquetes: nombres conocidos por canal.
Con catálogo, las referencias a paquetes del descriptor son verificables estáticamente.

Formato esperado (catalog.yaml):
  packages:            # canal por defecto
    - git
    - gcc
  channels:
    unstable:
      - ollama
      - bolt-launcher
"""

from pathlib import Path
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

import yaml

from hostplane.core.errors import ValidationError

DEFAULT_CHANNEL = "default"


class PackageCatalog:
    """Nombres de paquetes disponibles, agrupados por canal."""

    def __init__(self, packages: Iterable[str] = (), channels: Optional[Dict[str, Iterable[str]]] = None):
        self._channels: Dict[str, FrozenSet[str]] = {DEFAULT_CHANNEL: frozenset(packages)}
        for name, names in (channels or {}).items():
            self._channels[name] = frozenset(names or ())

    @property
    def channels(self) -> Tuple[str, ...]:
        return tuple(sorted(c for c in self._channels if c != DEFAULT_CHANNEL))

    def has_channel(self, channel: str) -> bool:
        return channel in self._channels

    def contains(self, name: str, channel: Optional[str] = None) -> bool:
        return name in self._channels.get(channel or DEFAULT_CHANNEL, frozenset())

    @classmethod
    def from_dict(cls, data: dict) -> "PackageCatalog":
        channels = data.get("channels") or {}
        if not isinstance(channels, dict):
            raise ValueError("'channels' debe ser un mapa canal → lista de paquetes")
        return cls(packages=data.get("packages") or [], channels=channels)


def split_channel(reference: str, channels: Iterable[str]) -> Tuple[Optional[str], str]:
    """
    Separa 'canal.paquete' en (canal, paquete) si el prefijo es un canal declarado.
    Ej: unstable.ollama → ("unstable", "ollama"); python3.11 → (None, "python3.11").
    """
    head, sep, tail = reference.partition(".")
    if sep and tail and head in set(channels):
        return head, tail
    return None, reference


def load_package_catalog(path: Path) -> PackageCatalog:
    """Carga un catálogo YAML. Un catálogo referenciado pero ausente invalida el descriptor."""
    if not path.exists():
        raise ValidationError([f"catálogo de paquetes no encontrado: {path}"], source=str(path))
    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError("el catálogo debe ser un mapa")
        return PackageCatalog.from_dict(data)
    except (yaml.YAMLError, ValueError) as e:
        raise ValidationError([f"catálogo inválido: {e}"], source=str(path)) from e
