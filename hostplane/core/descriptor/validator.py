"""
Validación semántica del estado deseado (lógica pura).

Sin I/O; solo reglas sobre el árbol ya tipado. Devuelve la lista completa de
errores para que el operador los corrija de una vez.
"""

import re
from typing import Dict, List, Optional

from hostplane.core.descriptor.catalog import PackageCatalog, split_channel
from hostplane.core.descriptor.models import DesiredState

NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_+.@-]*$")
USER_RE = re.compile(r"^[a-z_][a-z0-9_-]*\$?$")
ENV_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
KEYMAP_RE = re.compile(r"^[A-Za-z0-9_,-]+$")

LOADERS = ("systemd-boot", "grub")
LOCALE_CATEGORIES = (
    "LC_ADDRESS", "LC_COLLATE", "LC_CTYPE", "LC_IDENTIFICATION", "LC_MEASUREMENT", "LC_MESSAGES",
    "LC_MONETARY", "LC_NAME", "LC_NUMERIC", "LC_PAPER", "LC_TELEPHONE", "LC_TIME",
)


def _duplicates(names: List[str]) -> List[str]:
    seen, dups = set(), []
    for n in names:
        if n in seen and n not in dups:
            dups.append(n)
        seen.add(n)
    return dups


def validate_package_reference(
    reference: str,
    state: DesiredState,
    catalog: Optional[PackageCatalog] = None,
    where: str = "packages",
) -> List[str]:
    """Valida un nombre de paquete (con prefijo de canal opcional)."""
    errors: List[str] = []
    channel, name = split_channel(reference, state.channels)
    if not NAME_RE.match(name):
        return [f"{where}: nombre de paquete inválido '{reference}'"]
    if channel is None and "." in reference and catalog is not None:
        head = reference.split(".", 1)[0]
        if catalog.has_channel(head):
            errors.append(f"{where}: el canal '{head}' de '{reference}' no está declarado en 'channels'")
            return errors
    if catalog is None:
        return errors
    if channel is not None and not catalog.has_channel(channel):
        errors.append(f"{where}: canal '{channel}' no existe en el catálogo")
    elif not catalog.contains(name, channel):
        label = f"{channel}.{name}" if channel else name
        errors.append(f"{where}: paquete no definido en el catálogo '{label}'")
    return errors


def validate_ports(state: DesiredState) -> List[str]:
    """Dos servicios habilitados no pueden enlazar el mismo puerto."""
    errors: List[str] = []
    owners: Dict[int, str] = {}
    for service in state.services:
        if not service.enable:
            continue
        for port in service.ports:
            owner = owners.get(port)
            if owner and owner != service.name:
                errors.append(f"services: puerto {port} en conflicto entre '{owner}' y '{service.name}'")
            else:
                owners[port] = service.name
    return errors


def validate_desired_state(state: DesiredState, catalog: Optional[PackageCatalog] = None) -> List[str]:
    """
    Valida un DesiredState completo.
    Devuelve lista de mensajes de error; si vacía, es válido.
    """
    errors: List[str] = []

    for channel in state.channels:
        if not NAME_RE.match(channel) or "." in channel:
            errors.append(f"channels: nombre de canal inválido '{channel}'")

    # Boot
    loaded = set(state.boot.kernel_modules)
    blacklisted = set(state.boot.blacklisted_modules)
    for module in sorted(loaded & blacklisted):
        errors.append(f"boot: el módulo '{module}' está cargado y en lista negra a la vez")
    for module in list(state.boot.kernel_modules) + list(state.boot.blacklisted_modules):
        if not NAME_RE.match(module):
            errors.append(f"boot: nombre de módulo inválido '{module}'")
    if state.boot.loader is not None and state.boot.loader not in LOADERS:
        errors.append(f"boot: cargador de arranque no soportado '{state.boot.loader}'")
    for dup in _duplicates([s.device for s in state.boot.swap]):
        errors.append(f"boot.swap: dispositivo duplicado '{dup}'")
    for swap in state.boot.swap:
        if not swap.device.startswith("/"):
            errors.append(f"boot.swap: la ruta '{swap.device}' debe ser absoluta")
        elif swap.size_mib is None and not swap.device.startswith("/dev/"):
            errors.append(f"boot.swap: el archivo '{swap.device}' requiere size_mib")

    package_names = {split_channel(ref, state.channels)[1] for ref in state.packages}

    # Drivers
    for dup in _duplicates([d.name for d in state.drivers.devices]):
        errors.append(f"drivers: driver duplicado '{dup}'")
    for driver in state.drivers.devices:
        if driver.kernel_module and driver.kernel_module in blacklisted:
            errors.append(f"drivers: el módulo '{driver.kernel_module}' de '{driver.name}' está en lista negra")
        if driver.package:
            errors.extend(validate_package_reference(driver.package, state, catalog, where=f"drivers.{driver.name}"))
            if split_channel(driver.package, state.channels)[1] in package_names:
                errors.append(f"drivers: el paquete '{driver.package}' también está declarado en 'packages'")

    # Users
    for dup in _duplicates([u.name for u in state.users]):
        errors.append(f"users: usuario duplicado '{dup}'")
    for user in state.users:
        if not USER_RE.match(user.name):
            errors.append(f"users: nombre de usuario inválido '{user.name}'")
        for group in user.groups:
            if not USER_RE.match(group):
                errors.append(f"users.{user.name}: nombre de grupo inválido '{group}'")
        for dup in _duplicates(list(user.groups)):
            errors.append(f"users.{user.name}: grupo repetido '{dup}'")

    # Services
    names = [s.name for s in state.services]
    for dup in _duplicates(names):
        errors.append(f"services: servicio duplicado '{dup}'")
    for service in state.services:
        if not NAME_RE.match(service.name):
            errors.append(f"services: nombre de servicio inválido '{service.name}'")
        for ref in service.requires:
            target = state.get_service(ref)
            if target is None:
                errors.append(f"services.{service.name}: referencia a servicio desconocido '{ref}'")
            elif service.enable and not target.enable:
                errors.append(f"services.{service.name}: requiere '{ref}', que está deshabilitado")
        if service.package:
            errors.extend(validate_package_reference(service.package, state, catalog, where=f"services.{service.name}"))
        for var in service.environment:
            if not ENV_RE.match(var):
                errors.append(f"services.{service.name}: variable de entorno inválida '{var}'")
    errors.extend(validate_ports(state))

    # Packages
    # Con y sin prefijo de canal es el mismo paquete del host
    for dup in _duplicates([split_channel(ref, state.channels)[1] for ref in state.packages]):
        errors.append(f"packages: paquete duplicado '{dup}'")
    for reference in state.packages:
        errors.extend(validate_package_reference(reference, state, catalog))

    # Environment
    for var in state.environment.variables:
        if not ENV_RE.match(var):
            errors.append(f"environment: variable de entorno inválida '{var}'")
    for category in state.environment.extra_locale:
        if category not in LOCALE_CATEGORIES:
            errors.append(f"environment.extra_locale: categoría desconocida '{category}'")
    keyboard = state.environment.keyboard
    if keyboard is not None and not all(KEYMAP_RE.match(v) for v in (keyboard.layout, keyboard.variant) if v):
        errors.append(f"environment.keyboard: distribución inválida '{keyboard.layout}' '{keyboard.variant}'")
    for alias in state.environment.shell_aliases:
        if not NAME_RE.match(alias):
            errors.append(f"environment: alias inválido '{alias}'")

    return errors
