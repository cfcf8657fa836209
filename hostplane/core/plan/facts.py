"""
Proyección del estado deseado a hechos comparables.

Cada subsistema se aplana en hechos 'categoría:identificador' → valor, en orden de
declaración. Es el árbol estructural que recorre el Diff Engine y el mismo formato
que reportan los probes del host.
"""

from typing import Any, Dict, NamedTuple, Optional

from hostplane.core.descriptor.catalog import split_channel
from hostplane.core.descriptor.models import DesiredState
from hostplane.core.plan.actions import SUBSYSTEM_ORDER, Subsystem, fact_key
from hostplane.core.runtime.state import HostIdentity, ObservedState

# Archivos gestionados que el motor genera a partir del descriptor
BLACKLIST_FILE = "/etc/modprobe.d/hostplane-blacklist.conf"
UDEV_RULES_FILE = "/etc/udev/rules.d/99-hostplane.rules"
ALIASES_FILE = "/etc/profile.d/hostplane-aliases.sh"
MODULES_LOAD_FILE = "/etc/modules-load.d/hostplane.conf"
MANAGED_FILES = (BLACKLIST_FILE, UDEV_RULES_FILE, ALIASES_FILE, MODULES_LOAD_FILE)


class Fact(NamedTuple):
    value: Any
    order: int


Projection = Dict[Subsystem, Dict[str, Fact]]


def render_blacklist(modules) -> str:
    return "".join(f"blacklist {m}\n" for m in modules)


def render_modules_load(modules) -> str:
    return "".join(f"{m}\n" for m in modules)


def render_udev_rules(rules: str) -> str:
    return rules if rules.endswith("\n") else rules + "\n"


def render_aliases(aliases: Dict[str, str]) -> str:
    lines = []
    for name, command in aliases.items():
        escaped = command.replace("'", "'\\''")
        lines.append(f"alias {name}='{escaped}'\n")
    return "".join(lines)


def env_value(value: Any) -> str:
    """Las listas de variables se unen con ':' (estilo PATH)."""
    if isinstance(value, (list, tuple)):
        return ":".join(value)
    return str(value)


class _Builder:
    def __init__(self):
        self.projection: Projection = {s: {} for s in SUBSYSTEM_ORDER}
        self._owner: Dict[str, Subsystem] = {}

    def add(self, subsystem: Subsystem, category: str, identifier: str, value: Any, order: int) -> None:
        key = fact_key(category, identifier)
        # Una clave pertenece al primer subsistema que la declara
        if key in self._owner:
            return
        self._owner[key] = subsystem
        self.projection[subsystem][key] = Fact(value, order)


def project(state: DesiredState) -> Projection:
    """Aplana un DesiredState en hechos por subsistema (orden de declaración)."""
    b = _Builder()

    boot = state.boot
    if boot.loader is not None:
        b.add(Subsystem.BOOT, "config", "boot.loader", boot.loader, 0)
    if boot.kernel_params:
        b.add(Subsystem.BOOT, "config", "boot.kernel_params", list(boot.kernel_params), 1)
    for i, module in enumerate(boot.kernel_modules):
        b.add(Subsystem.BOOT, "module", module, True, 2 + i)
    order = 2 + len(boot.kernel_modules)
    if boot.kernel_modules:
        # Carga persistente en los próximos arranques
        b.add(Subsystem.BOOT, "file", MODULES_LOAD_FILE, render_modules_load(boot.kernel_modules), order)
    if boot.blacklisted_modules:
        b.add(Subsystem.BOOT, "file", BLACKLIST_FILE, render_blacklist(boot.blacklisted_modules), order + 1)
    for i, swap in enumerate(boot.swap):
        b.add(Subsystem.BOOT, "config", f"boot.swap.{swap.device}", {"size_mib": swap.size_mib}, order + 2 + i)

    for i, driver in enumerate(state.drivers.devices):
        if driver.package:
            b.add(Subsystem.DRIVERS, "package", package_name(driver.package, state.channels), True, i)
        if driver.kernel_module:
            b.add(Subsystem.DRIVERS, "module", driver.kernel_module, True, i)
    if state.drivers.udev_rules:
        b.add(Subsystem.DRIVERS, "file", UDEV_RULES_FILE, render_udev_rules(state.drivers.udev_rules), len(state.drivers.devices))

    net = state.network
    if net.hostname is not None:
        b.add(Subsystem.NETWORK, "config", "network.hostname", net.hostname, 0)
    if net.networkmanager is not None:
        b.add(Subsystem.NETWORK, "config", "network.networkmanager", net.networkmanager, 1)
    if net.firewall is not None:
        fw = net.firewall
        b.add(Subsystem.NETWORK, "config", "network.firewall.enable", fw.enable, 2)
        b.add(Subsystem.NETWORK, "config", "network.firewall.allowed_tcp_ports", sorted(set(fw.allowed_tcp_ports)), 3)
        b.add(Subsystem.NETWORK, "config", "network.firewall.allowed_udp_ports", sorted(set(fw.allowed_udp_ports)), 4)

    for i, user in enumerate(state.users):
        b.add(Subsystem.USERS, "user", user.name, user.attributes(), i)
        for group in user.groups:
            b.add(Subsystem.USERS, "member", f"{user.name}:{group}", True, i)

    for i, service in enumerate(state.services):
        b.add(Subsystem.SERVICES, "service", service.name, service.enable, i)
        if service.package:
            # Instalado antes de habilitar el servicio
            b.add(Subsystem.SERVICES, "package", package_name(service.package, state.channels), True, i)
        for setting, value in service.settings.items():
            b.add(Subsystem.SERVICES, "config", f"{service.name}.{setting}", value, i)
        for var, value in service.environment.items():
            b.add(Subsystem.SERVICES, "config", f"{service.name}.environment.{var}", value, i)

    for i, reference in enumerate(state.packages):
        b.add(Subsystem.PACKAGES, "package", package_name(reference, state.channels), True, i)

    env = state.environment
    order = 0
    if env.time_zone is not None:
        b.add(Subsystem.ENVIRONMENT, "config", "environment.time_zone", env.time_zone, order)
        order += 1
    if env.locale is not None:
        b.add(Subsystem.ENVIRONMENT, "config", "environment.locale", env.locale, order)
        order += 1
    for category, value in env.extra_locale.items():
        b.add(Subsystem.ENVIRONMENT, "config", f"environment.locale.{category}", value, order)
        order += 1
    if env.keyboard is not None:
        b.add(Subsystem.ENVIRONMENT, "config", "environment.keyboard", env.keyboard.model_dump(), order)
        order += 1
    for var, value in env.variables.items():
        b.add(Subsystem.ENVIRONMENT, "env", var, env_value(value), order)
        order += 1
    if env.shell_aliases:
        b.add(Subsystem.ENVIRONMENT, "file", ALIASES_FILE, render_aliases(env.shell_aliases), order)

    return b.projection


def package_name(reference: str, channels) -> str:
    """Nombre del paquete sin prefijo de canal."""
    return split_channel(reference, channels)[1]


def package_channels(state: DesiredState) -> Dict[str, str]:
    """Paquete → canal, para los paquetes declarados con prefijo de canal."""
    out: Dict[str, str] = {}
    references = list(state.packages) + [d.package for d in state.drivers.devices if d.package]
    references += [s.package for s in state.services if s.package]
    for reference in references:
        name = package_name(reference, state.channels)
        if name != reference:
            out[name] = reference.split(".", 1)[0]
    return out


def flatten(state: DesiredState) -> Dict[str, Any]:
    """Hechos deseados como {clave: valor} (sin subsistema ni orden)."""
    out: Dict[str, Any] = {}
    for facts in project(state).values():
        for key, fact in facts.items():
            out[key] = fact.value
    return out


def managed_keys(state: DesiredState) -> Dict[str, Subsystem]:
    """Clave → subsistema dueño, para marcar hechos gestionados por una generación."""
    out: Dict[str, Subsystem] = {}
    for subsystem, facts in project(state).items():
        for key in facts:
            out[key] = subsystem
    return out


def snapshot(state: DesiredState, identity: Optional[HostIdentity] = None) -> ObservedState:
    """ObservedState de un host que ya coincide con 'state' (todo gestionado)."""
    return ObservedState(facts=flatten(state), managed=managed_keys(state), identity=identity)
