"""
Backend del sistema real: systemd, gestor de paquetes, /proc, pwd/grp y archivos gestionados.
La configuración viva (arranque, red, locale) está en hostconfig.HostConfigMixin.

Los probes solo leen. Cada apply_<tipo> hace un único cambio y lanza si falla.
'root' permite redirigir las rutas del host (tests, chroot).
"""

import grp
import json
import pwd
import shlex
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from rich.console import Console

from hostplane.core.infra.base import BaseBackend
from hostplane.core.plan.actions import Action
from hostplane.core.plan.facts import MANAGED_FILES
from hostplane.core.runtime.state import UNKNOWN
from hostplane.providers.hostconfig import HostConfigMixin, is_live_key, parse_environment_file
from hostplane.providers.tools import (
    CommandError,
    check_command,
    read_file_safe,
    remove_file_safe,
    run_command,
    write_file_safe,
)

PROBE_TIMEOUT = 60

# Estado de systemctl list-unit-files → valor del hecho 'service'
UNIT_STATES = {
    "enabled": True,
    "enabled-runtime": True,
    "disabled": False,
    "masked": False,
}


def _list_packages_command(manager: str) -> List[str]:
    if manager == "apt":
        return ["dpkg-query", "-W", "-f=${db:Status-Abbrev} ${Package}\n"]
    if manager == "dnf":
        return ["rpm", "-qa", "--qf", "%{NAME}\n"]
    return ["pacman", "-Qq"]


def _install_command(manager: str, name: str, channel: Optional[str]) -> List[str]:
    if manager == "apt":
        return ["apt-get", "install", "-y"] + (["-t", channel] if channel else []) + [name]
    if manager == "dnf":
        return ["dnf", "install", "-y"] + ([f"--enablerepo={channel}"] if channel else []) + [name]
    return ["pacman", "-S", "--noconfirm", f"{channel}/{name}" if channel else name]


def _remove_command(manager: str, name: str) -> List[str]:
    if manager == "apt":
        return ["apt-get", "remove", "-y", name]
    if manager == "dnf":
        return ["dnf", "remove", "-y", name]
    return ["pacman", "-R", "--noconfirm", name]


def parse_package_list(manager: str, output: str) -> Dict[str, Any]:
    packages: Dict[str, Any] = {}
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        if manager == "apt":
            # Solo paquetes instalados ("ii"); "rc" = removido con config
            parts = line.split()
            if len(parts) < 2 or parts[0][:2] != "ii":
                continue
            line = parts[-1].split(":", 1)[0]
        packages[line] = True
    return packages


def parse_unit_files(output: str) -> Dict[str, Any]:
    services: Dict[str, Any] = {}
    for line in output.splitlines():
        parts = line.split()
        if len(parts) < 2 or not parts[0].endswith(".service") or "@" in parts[0]:
            continue
        name = parts[0][: -len(".service")]
        services[name] = UNIT_STATES.get(parts[1], UNKNOWN)
    return services


def parse_dropin_environment(text: str) -> Dict[str, str]:
    """Variables de las líneas Environment="K=V" de un drop-in de systemd."""
    variables: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line.startswith("Environment="):
            continue
        name, _, value = line[len("Environment="):].strip('"').partition("=")
        variables[name] = value
    return variables


def render_environment_file(variables: Dict[str, str]) -> str:
    lines = ["# Gestionado por hostplane\n"]
    for name, value in variables.items():
        lines.append(f'{name}="{value}"\n')
    return "".join(lines)


class SystemBackend(HostConfigMixin, BaseBackend):
    name = "system"

    def __init__(
        self,
        package_manager: str = "apt",
        config_dir: Path = Path("/etc/hostplane"),
        root: Path = Path("/"),
        firewall: Optional[str] = None,
        console: Optional[Console] = None,
    ):
        self.package_manager = package_manager
        self.config_dir = Path(config_dir)
        self.root = Path(root)
        # ufw | firewalld; None = se detecta en el primer uso
        self.firewall = firewall
        self.console = console

    def _host_path(self, path: str) -> Path:
        return self.root / path.lstrip("/")

    @property
    def settings_path(self) -> Path:
        return self.config_dir / "settings.json"

    def _run(self, command: List[str]) -> str:
        if self.console:
            self.console.print(f"[dim]$ {shlex.join(command)}[/dim]")
        return check_command(command, console=self.console)

    def _query(self, command: List[str]) -> Tuple[bool, str, str]:
        """Comando de solo lectura; nunca lanza."""
        return run_command(command, timeout=PROBE_TIMEOUT)

    # --- probes ---

    def _read_settings(self) -> Dict[str, Any]:
        text = read_file_safe(self.settings_path)
        return json.loads(text) if text else {}

    def probe_config(self) -> Dict[str, Any]:
        """Settings de servicios, su entorno (drop-ins) y la configuración viva del host."""
        values = {k: v for k, v in self._read_settings().items() if not is_live_key(k)}
        for dropin in sorted(self._host_path("/etc/systemd/system").glob("*.service.d/hostplane.conf")):
            service = dropin.parent.name[: -len(".service.d")]
            for name, value in parse_dropin_environment(dropin.read_text()).items():
                values[f"{service}.environment.{name}"] = value
        values.update(self.probe_live_config())
        return values

    def probe_module(self) -> Dict[str, Any]:
        text = self._host_path("/proc/modules").read_text()
        return {line.split()[0]: True for line in text.splitlines() if line.strip()}

    def probe_file(self) -> Dict[str, Any]:
        files: Dict[str, Any] = {}
        for path in MANAGED_FILES:
            content = read_file_safe(self._host_path(path))
            if content is not None:
                files[path] = content
        return files

    def probe_package(self) -> Dict[str, Any]:
        ok, stdout, stderr = run_command(_list_packages_command(self.package_manager), timeout=PROBE_TIMEOUT)
        if not ok:
            raise OSError(f"no se pudo listar paquetes ({self.package_manager}): {stderr.strip()}")
        return parse_package_list(self.package_manager, stdout)

    def probe_service(self) -> Dict[str, Any]:
        command = ["systemctl", "list-unit-files", "--type=service", "--no-legend", "--no-pager", "--plain"]
        ok, stdout, stderr = run_command(command, timeout=PROBE_TIMEOUT)
        if not ok:
            raise OSError(f"systemctl no disponible: {stderr.strip()}")
        return parse_unit_files(stdout)

    def probe_env(self) -> Dict[str, Any]:
        text = read_file_safe(self._host_path("/etc/environment")) or ""
        return parse_environment_file(text)

    def probe_user(self) -> Dict[str, Any]:
        users: Dict[str, Any] = {}
        for entry in pwd.getpwall():
            users[entry.pw_name] = {
                "description": entry.pw_gecos.split(",")[0],
                "normal_user": 1000 <= entry.pw_uid < 65534,
                "shell": entry.pw_shell,
            }
        return users

    def probe_member(self) -> Dict[str, Any]:
        members: Dict[str, Any] = {}
        for group in grp.getgrall():
            for user in group.gr_mem:
                members[f"{user}:{group.gr_name}"] = True
        return members

    # --- acciones ---

    def apply_install(self, action: Action) -> None:
        self._run(_install_command(self.package_manager, action.target, action.channel))

    def apply_remove(self, action: Action) -> None:
        self._run(_remove_command(self.package_manager, action.target))

    def apply_enable_service(self, action: Action) -> None:
        self._run(["systemctl", "enable", "--now", f"{action.target}.service"])

    def apply_disable_service(self, action: Action) -> None:
        try:
            self._run(["systemctl", "disable", "--now", f"{action.target}.service"])
        except CommandError as e:
            # Una unidad inexistente ya está deshabilitada
            if "not found" in e.stderr or "does not exist" in e.stderr:
                return
            raise

    def apply_set_config(self, action: Action) -> None:
        if is_live_key(action.target):
            self.apply_live_config(action.target, action.after)
            return
        service, sep, var = action.target.partition(".environment.")
        if sep and var:
            self._write_service_environment(service, var, action.after)
            return
        settings = self._read_settings()
        if action.after is None:
            settings.pop(action.target, None)
        else:
            settings[action.target] = action.after
        write_file_safe(self.settings_path, json.dumps(settings, indent=2, sort_keys=True) + "\n")

    def _write_service_environment(self, service: str, name: str, value: Any) -> None:
        """Drop-in de systemd con las variables de entorno del servicio."""
        dropin = self._host_path(f"/etc/systemd/system/{service}.service.d/hostplane.conf")
        variables = parse_dropin_environment(read_file_safe(dropin) or "")
        if value is None:
            variables.pop(name, None)
        else:
            variables[name] = str(value)
        if variables:
            lines = ["[Service]\n"] + [f'Environment="{k}={v}"\n' for k, v in sorted(variables.items())]
            write_file_safe(dropin, "".join(lines))
        else:
            remove_file_safe(dropin)
        self._run(["systemctl", "daemon-reload"])

    def apply_write_file(self, action: Action) -> None:
        if action.target not in MANAGED_FILES:
            raise PermissionError(f"archivo no gestionado por hostplane: {action.target}")
        path = self._host_path(action.target)
        if action.after is None:
            remove_file_safe(path)
        else:
            write_file_safe(path, str(action.after))

    def _write_environment(self, name: str, value: Optional[str]) -> None:
        path = self._host_path("/etc/environment")
        variables = parse_environment_file(read_file_safe(path) or "")
        if value is None:
            variables.pop(name, None)
        else:
            variables[name] = value
        write_file_safe(path, render_environment_file(variables))

    def apply_set_env(self, action: Action) -> None:
        self._write_environment(action.target, str(action.after))

    def apply_unset_env(self, action: Action) -> None:
        self._write_environment(action.target, None)

    def apply_load_module(self, action: Action) -> None:
        self._run(["modprobe", action.target])

    def apply_unload_module(self, action: Action) -> None:
        self._run(["modprobe", "-r", action.target])

    def _user_args(self, attributes: Dict[str, Any]) -> List[str]:
        return ["-c", str(attributes.get("description", "")), "-s", str(attributes.get("shell", "/bin/bash"))]

    def apply_create_user(self, action: Action) -> None:
        attributes = dict(action.after or {})
        try:
            pwd.getpwnam(action.target)
        except KeyError:
            system = [] if attributes.get("normal_user", True) else ["-r"]
            self._run(["useradd", "-m"] + system + self._user_args(attributes) + [action.target])
            return
        # Ya existe (lectura desactualizada): se ajustan sus atributos
        self._run(["usermod"] + self._user_args(attributes) + [action.target])

    def apply_modify_user(self, action: Action) -> None:
        self._run(["usermod"] + self._user_args(dict(action.after or {})) + [action.target])

    def apply_remove_user(self, action: Action) -> None:
        self._run(["userdel", action.target])

    def apply_add_group(self, action: Action) -> None:
        user, _, group = action.target.partition(":")
        try:
            grp.getgrnam(group)
        except KeyError:
            self._run(["groupadd", group])
        self._run(["gpasswd", "-a", user, group])

    def apply_remove_group(self, action: Action) -> None:
        user, _, group = action.target.partition(":")
        self._run(["gpasswd", "-d", user, group])
