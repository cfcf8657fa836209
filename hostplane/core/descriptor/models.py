"""
Modelos del descriptor (estado deseado del host).
Usa Pydantic para validación de esquema y serialización.

El árbol es inmutable (frozen); las secuencias se guardan como tuplas.
Las opciones que un host puede omitir son campos opcionales con default
documentado.
"""

import hashlib
import json
from typing import Dict, Optional, Tuple, Union

from pydantic import BaseModel, Field, conint, field_validator

Port = conint(ge=1, le=65535)
Scalar = Union[bool, int, float, str]


def _stringify(values):
    if not isinstance(values, dict):
        return values
    out = {}
    for k, v in values.items():
        if v is None:
            out[k] = v
        elif isinstance(v, (list, tuple)):
            out[k] = tuple(str(x) for x in v)
        elif isinstance(v, bool):
            out[k] = "1" if v else "0"
        else:
            out[k] = str(v)
    return out


class _Section(BaseModel):
    class Config:
        frozen = True
        extra = "forbid"


class HostSection(_Section):
    """Guardas de identidad: si se declaran, el host vivo debe coincidir."""
    hostname: Optional[str] = Field(None, description="Hostname esperado (None = cualquiera)")
    architecture: Optional[str] = Field(None, description="Arquitectura esperada, ej: x86_64 (None = cualquiera)")


class SwapDevice(_Section):
    """Swap en archivo (se crea con size_mib) o en partición (/dev/...)."""
    device: str = Field(..., description="Ruta absoluta, ej: /var/swap")
    size_mib: Optional[conint(ge=1)] = Field(None, description="Tamaño en MiB; obligatorio para archivos")


class BootSection(_Section):
    """Parámetros de arranque y módulos de kernel."""
    loader: Optional[str] = Field(None, description="systemd-boot | grub (None = no gestionado)")
    kernel_modules: Tuple[str, ...] = Field((), description="Módulos a cargar")
    blacklisted_modules: Tuple[str, ...] = Field((), description="Módulos en lista negra (modprobe.d)")
    kernel_params: Tuple[str, ...] = Field((), description="Parámetros de línea de comandos del kernel")
    swap: Tuple[SwapDevice, ...] = Field((), description="Swap persistente (fstab)")


class DriverSpec(_Section):
    """Driver de hardware: paquete y módulo de kernel asociado."""
    name: str = Field(..., description="Nombre lógico (ej: nvidia)")
    package: Optional[str] = Field(None, description="Paquete del driver (ej: nvidia-x11)")
    kernel_module: Optional[str] = Field(None, description="Módulo de kernel que aporta")


class DriversSection(_Section):
    devices: Tuple[DriverSpec, ...] = ()
    udev_rules: Optional[str] = Field(None, description="Reglas udev extra (None = sin archivo de reglas)")


class FirewallSection(_Section):
    enable: bool = Field(True, description="Firewall activo (default: true)")
    allowed_tcp_ports: Tuple[Port, ...] = ()
    allowed_udp_ports: Tuple[Port, ...] = ()


class NetworkSection(_Section):
    hostname: Optional[str] = Field(None, description="Hostname a fijar (None = no gestionado)")
    networkmanager: Optional[bool] = Field(None, description="NetworkManager (None = no gestionado)")
    firewall: Optional[FirewallSection] = Field(None, description="Firewall (None = no gestionado)")


class UserSpec(_Section):
    """Cuenta de usuario y sus membresías de grupo."""
    name: str
    description: str = ""
    normal_user: bool = Field(True, description="Usuario normal (uid >= 1000)")
    shell: str = Field("/bin/bash", description="Shell de login (default: /bin/bash)")
    groups: Tuple[str, ...] = ()

    def attributes(self) -> Dict[str, object]:
        """Atributos comparables de la cuenta (sin grupos)."""
        return {"description": self.description, "normal_user": self.normal_user, "shell": self.shell}


class ServiceSpec(_Section):
    """Servicio del sistema: estado, settings y entorno propio."""
    name: str
    enable: bool = True
    package: Optional[str] = Field(None, description="Paquete que implementa el servicio (ej: unstable.ollama)")
    ports: Tuple[Port, ...] = Field((), description="Puertos que el servicio enlaza")
    requires: Tuple[str, ...] = Field((), description="Servicios de los que depende")
    settings: Dict[str, Scalar] = Field(default_factory=dict)
    environment: Dict[str, str] = Field(default_factory=dict)

    @field_validator("environment", mode="before")
    @classmethod
    def coerce_environment(cls, v):
        return _stringify(v)


class KeyboardSection(_Section):
    layout: str = Field(..., description="Distribución XKB, ej: us")
    variant: str = Field("", description="Variante XKB (vacía = por defecto)")


class EnvironmentSection(_Section):
    time_zone: Optional[str] = Field(None, description="Zona horaria (None = no gestionada)")
    locale: Optional[str] = Field(None, description="Locale por defecto (None = no gestionado)")
    extra_locale: Dict[str, str] = Field(default_factory=dict, description="Categorías LC_* (ej: LC_TIME)")
    keyboard: Optional[KeyboardSection] = Field(None, description="Distribución de teclado X11 (None = no gestionada)")
    variables: Dict[str, Union[str, Tuple[str, ...]]] = Field(
        default_factory=dict,
        description="Variables globales; una lista se une con ':'",
    )
    shell_aliases: Dict[str, str] = Field(default_factory=dict)

    @field_validator("variables", mode="before")
    @classmethod
    def coerce_variables(cls, v):
        return _stringify(v)


class DesiredState(_Section):
    """Estado deseado completo de un host (raíz del descriptor)."""
    version: int = Field(1, description="Versión del esquema")
    host: HostSection = Field(default_factory=HostSection)
    channels: Tuple[str, ...] = Field((), description="Canales de paquetes extra (ej: unstable)")
    catalog: Optional[str] = Field(None, description="Ruta al catálogo de paquetes, relativa al descriptor")
    boot: BootSection = Field(default_factory=BootSection)
    drivers: DriversSection = Field(default_factory=DriversSection)
    network: NetworkSection = Field(default_factory=NetworkSection)
    users: Tuple[UserSpec, ...] = ()
    services: Tuple[ServiceSpec, ...] = ()
    packages: Tuple[str, ...] = ()
    environment: EnvironmentSection = Field(default_factory=EnvironmentSection)

    def canonical_json(self) -> str:
        """JSON canónico (claves ordenadas, sin espacios) usado para el hash."""
        return json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))

    def content_hash(self) -> str:
        return hashlib.sha256(self.canonical_json().encode("utf-8")).hexdigest()

    def get_service(self, name: str) -> Optional[ServiceSpec]:
        for service in self.services:
            if service.name == name:
                return service
        return None

    def get_user(self, name: str) -> Optional[UserSpec]:
        for user in self.users:
            if user.name == name:
                return user
        return None
