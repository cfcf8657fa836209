"""
Configuración viva del host: arranque, swap, red, firewall, locale y teclado.

Cada clave 'config:' se lee del host (archivos del sistema o comandos de consulta) y se
aplica con la herramienta nativa. De los parámetros de kernel y los puertos del firewall
solo se gestionan los valores que hostplane agregó; ese registro vive en owned.json.
"""

import json
import os
import platform
import re
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from hostplane.core.runtime.state import UNKNOWN
from hostplane.providers.tools import read_file_safe, remove_file_safe, write_file_safe

MIB = 1024 * 1024
GRUB_DEFAULTS = "/etc/default/grub"
KERNEL_CMDLINE = "/etc/kernel/cmdline"
KEYBOARD_CONF = "/etc/X11/xorg.conf.d/00-keyboard.conf"
LOCALE_FILES = ("/etc/locale.conf", "/etc/default/locale")

SWAP_PREFIX = "boot.swap."
LOCALE_PREFIX = "environment.locale."
FIREWALL_PORT_KEYS = {
    "network.firewall.allowed_tcp_ports": "tcp",
    "network.firewall.allowed_udp_ports": "udp",
}
LIVE_KEYS = (
    "boot.loader",
    "boot.kernel_params",
    "network.hostname",
    "network.networkmanager",
    "network.firewall.enable",
    *FIREWALL_PORT_KEYS,
    "environment.time_zone",
    "environment.locale",
    "environment.keyboard",
)

_GRUB_CMDLINE = re.compile(r"^GRUB_CMDLINE_LINUX_DEFAULT=(.*)$", re.M)
_XKB_OPTION = re.compile(r'Option\s+"(Xkb\w+)"\s+"([^"]*)"')


def is_live_key(key: str) -> bool:
    """Claves que se leen y aplican sobre el host (no en settings.json)."""
    return key in LIVE_KEYS or key.startswith((SWAP_PREFIX, LOCALE_PREFIX))


def parse_environment_file(text: str) -> Dict[str, str]:
    variables: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        name, _, value = line.partition("=")
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
            value = value[1:-1]
        variables[name.strip()] = value
    return variables


def parse_grub_cmdline(text: str) -> List[str]:
    match = _GRUB_CMDLINE.search(text)
    if not match:
        return []
    return match.group(1).strip().strip("\"'").split()


def render_grub_cmdline(text: str, params: List[str]) -> str:
    line = 'GRUB_CMDLINE_LINUX_DEFAULT="' + " ".join(params) + '"'
    if _GRUB_CMDLINE.search(text):
        return _GRUB_CMDLINE.sub(lambda _: line, text, count=1)
    if text and not text.endswith("\n"):
        text += "\n"
    return text + line + "\n"


def parse_ufw_status(output: str) -> Tuple[bool, Dict[str, List[int]]]:
    """
    Interpreta 'ufw status'.

    Returns:
        (activo, {"tcp": [...], "udp": [...]}) con los puertos permitidos
    """
    active = False
    ports: Dict[str, set] = {"tcp": set(), "udp": set()}
    for line in output.splitlines():
        line = line.strip()
        if line.lower().startswith("status:"):
            active = line.split(":", 1)[1].strip() == "active"
            continue
        parts = line.split()
        if len(parts) < 2 or "ALLOW" not in parts:
            continue
        port, _, proto = parts[0].partition("/")
        if not port.isdigit():
            continue
        # Sin protocolo la regla abre tcp y udp
        for name in ([proto] if proto else ["tcp", "udp"]):
            if name in ports:
                ports[name].add(int(port))
    return active, {name: sorted(values) for name, values in ports.items()}


def parse_firewalld_ports(output: str) -> Dict[str, List[int]]:
    ports: Dict[str, set] = {"tcp": set(), "udp": set()}
    for token in output.split():
        port, _, proto = token.partition("/")
        if port.isdigit() and proto in ports:
            ports[proto].add(int(port))
    return {name: sorted(values) for name, values in ports.items()}


def parse_swaps(text: str) -> List[str]:
    """Dispositivos activos según /proc/swaps (primera línea = encabezado)."""
    return [line.split()[0] for line in text.splitlines()[1:] if line.strip()]


def parse_fstab_swaps(text: str) -> List[str]:
    devices = []
    for line in text.splitlines():
        fields = line.split()
        if len(fields) >= 3 and not fields[0].startswith("#") and fields[2] == "swap":
            devices.append(fields[0])
    return devices


def render_fstab(text: str, device: str, present: bool) -> str:
    lines = []
    for line in text.splitlines(keepends=True):
        fields = line.split()
        if len(fields) >= 3 and fields[0] == device and fields[2] == "swap":
            continue
        lines.append(line if line.endswith("\n") else line + "\n")
    if present:
        lines.append(f"{device} none swap defaults 0 0\n")
    return "".join(lines)


def parse_keyboard_conf(text: str) -> Optional[Dict[str, str]]:
    options = dict(_XKB_OPTION.findall(text))
    if "XkbLayout" not in options:
        return None
    return {"layout": options["XkbLayout"], "variant": options.get("XkbVariant", "")}


class HostConfigMixin:
    """
    Lectura y aplicación de las claves 'config:' vivas.

    El backend que lo usa aporta config_dir, firewall, _host_path, _run (lanza si falla)
    y _query (devuelve (ok, stdout, stderr) sin lanzar).
    """

    firewall: Optional[str] = None

    # --- registro de valores propios ---

    @property
    def owned_path(self) -> Path:
        return self.config_dir / "owned.json"

    def _owned(self) -> Dict[str, Any]:
        text = read_file_safe(self.owned_path)
        return json.loads(text) if text else {}

    def _set_owned(self, key: str, value: Any) -> None:
        owned = self._owned()
        if value is None:
            owned.pop(key, None)
        else:
            owned[key] = value
        write_file_safe(self.owned_path, json.dumps(owned, indent=2, sort_keys=True) + "\n")

    # --- probes ---

    def probe_live_config(self) -> Dict[str, Any]:
        owned = self._owned()
        values: Dict[str, Any] = {"network.hostname": platform.node()}
        values.update(self._probe_boot(owned))
        values.update(self._probe_network(owned))
        values.update(self._probe_locale())
        return values

    def _probe_boot(self, owned: Dict[str, Any]) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        loader = self._installed_loader()
        if loader:
            values["boot.loader"] = loader
        if "boot.kernel_params" in owned:
            configured = set(self._kernel_cmdline())
            values["boot.kernel_params"] = [p for p in owned["boot.kernel_params"] if p in configured]
        active = set(parse_swaps(read_file_safe(self._host_path("/proc/swaps")) or ""))
        persistent = parse_fstab_swaps(read_file_safe(self._host_path("/etc/fstab")) or "")
        for device in persistent:
            if device not in active:
                continue
            path = self._host_path(device)
            size = path.stat().st_size // MIB if path.is_file() else None
            values[f"{SWAP_PREFIX}{device}"] = {"size_mib": size}
        return values

    def _installed_loader(self) -> Optional[str]:
        ok, stdout, _ = self._query(["bootctl", "is-installed"])
        if ok and stdout.strip() == "yes":
            return "systemd-boot"
        for cfg in ("/boot/grub/grub.cfg", "/boot/grub2/grub.cfg"):
            if self._host_path(cfg).exists():
                return "grub"
        return None

    def _kernel_cmdline(self) -> List[str]:
        """Parámetros configurados para el próximo arranque (o los del arranque actual)."""
        grub = read_file_safe(self._host_path(GRUB_DEFAULTS))
        if grub is not None:
            return parse_grub_cmdline(grub)
        text = read_file_safe(self._host_path(KERNEL_CMDLINE))
        if text is not None:
            return text.split()
        live = read_file_safe(self._host_path("/proc/cmdline")) or ""
        return [p for p in live.split() if not p.startswith(("BOOT_IMAGE=", "initrd="))]

    def _probe_network(self, owned: Dict[str, Any]) -> Dict[str, Any]:
        _, stdout, _ = self._query(["systemctl", "is-enabled", "NetworkManager.service"])
        state = stdout.strip()
        if state in ("enabled", "enabled-runtime"):
            networkmanager: Any = True
        elif state in ("disabled", "masked", ""):
            networkmanager = False
        else:
            networkmanager = UNKNOWN
        values: Dict[str, Any] = {"network.networkmanager": networkmanager}

        firewall = self._firewall_state()
        if firewall is None:
            values["network.firewall.enable"] = UNKNOWN
            for key in FIREWALL_PORT_KEYS:
                if key in owned:
                    values[key] = UNKNOWN
            return values
        active, open_ports = firewall
        values["network.firewall.enable"] = active
        for key, proto in FIREWALL_PORT_KEYS.items():
            if key in owned:
                values[key] = sorted(p for p in owned[key] if p in open_ports[proto])
        return values

    def _firewall_tool(self) -> Optional[str]:
        if self.firewall is None:
            if shutil.which("ufw"):
                self.firewall = "ufw"
            elif shutil.which("firewall-cmd"):
                self.firewall = "firewalld"
        return self.firewall

    def _firewall_state(self) -> Optional[Tuple[bool, Dict[str, List[int]]]]:
        """(activo, puertos abiertos por protocolo), o None si no se puede leer."""
        tool = self._firewall_tool()
        if tool == "ufw":
            ok, stdout, _ = self._query(["ufw", "status"])
            return parse_ufw_status(stdout) if ok else None
        if tool == "firewalld":
            running, _, _ = self._query(["firewall-cmd", "--state"])
            ok, stdout, _ = self._query(["firewall-cmd", "--permanent", "--list-ports"])
            return (running, parse_firewalld_ports(stdout)) if ok else None
        return None

    def _locale_path(self) -> Optional[Path]:
        for name in LOCALE_FILES:
            path = self._host_path(name)
            if path.exists():
                return path
        return None

    def _locale_variables(self) -> Dict[str, str]:
        path = self._locale_path()
        return parse_environment_file(read_file_safe(path) or "") if path else {}

    def _probe_locale(self) -> Dict[str, Any]:
        values: Dict[str, Any] = {}
        try:
            target = os.readlink(self._host_path("/etc/localtime"))
        except OSError:
            target = ""
        _, sep, zone = target.partition("zoneinfo/")
        if sep:
            values["environment.time_zone"] = zone
        for name, value in self._locale_variables().items():
            if name == "LANG":
                values["environment.locale"] = value
            elif name.startswith("LC_"):
                values[f"{LOCALE_PREFIX}{name}"] = value
        keyboard = parse_keyboard_conf(read_file_safe(self._host_path(KEYBOARD_CONF)) or "")
        if keyboard:
            values["environment.keyboard"] = keyboard
        return values

    # --- acciones ---

    def apply_live_config(self, key: str, value: Any) -> None:
        """Aplica una clave viva; value None = dejar de gestionarla."""
        if key == "boot.loader":
            self._apply_loader(value)
        elif key == "boot.kernel_params":
            self._apply_kernel_params(value)
        elif key.startswith(SWAP_PREFIX):
            self._apply_swap(key[len(SWAP_PREFIX):], value)
        elif key == "network.hostname":
            if value is not None:
                self._run(["hostnamectl", "set-hostname", str(value)])
        elif key == "network.networkmanager":
            if value is not None:
                self._run(["systemctl", "enable" if value else "disable", "--now", "NetworkManager.service"])
        elif key == "network.firewall.enable":
            self._apply_firewall_enable(value)
        elif key in FIREWALL_PORT_KEYS:
            self._apply_firewall_ports(key, value)
        elif key == "environment.time_zone":
            if value is not None:
                self._run(["timedatectl", "set-timezone", str(value)])
        elif key == "environment.locale":
            self._apply_locale("LANG", value)
        elif key.startswith(LOCALE_PREFIX):
            self._apply_locale(key[len(LOCALE_PREFIX):], value)
        elif key == "environment.keyboard":
            if value is not None:
                command = ["localectl", "set-x11-keymap", value["layout"]]
                if value.get("variant"):
                    command += ["", value["variant"]]
                self._run(command)
        else:
            raise KeyError(f"clave de configuración desconocida: {key}")

    def _apply_loader(self, loader: Optional[str]) -> None:
        if loader is None:
            return
        if loader == "systemd-boot":
            self._run(["bootctl", "install"])
        elif loader == "grub":
            self._run(["grub-install"])
            self._regenerate_grub()
        else:
            raise ValueError(f"cargador de arranque no soportado: {loader}")

    def _regenerate_grub(self) -> None:
        if self._host_path("/boot/grub2/grub.cfg").exists():
            self._run(["grub2-mkconfig", "-o", "/boot/grub2/grub.cfg"])
        else:
            self._run(["grub-mkconfig", "-o", "/boot/grub/grub.cfg"])

    def _apply_kernel_params(self, params: Optional[List[str]]) -> None:
        desired = list(params or [])
        previous = self._owned().get("boot.kernel_params", [])
        current = [p for p in self._kernel_cmdline() if p in desired or p not in previous]
        current += [p for p in desired if p not in current]
        grub_path = self._host_path(GRUB_DEFAULTS)
        grub = read_file_safe(grub_path)
        if grub is not None:
            write_file_safe(grub_path, render_grub_cmdline(grub, current))
            self._regenerate_grub()
        else:
            write_file_safe(self._host_path(KERNEL_CMDLINE), " ".join(current) + "\n")
            release = platform.release()
            self._run(["kernel-install", "add", release, f"/usr/lib/modules/{release}/vmlinuz"])
        self._set_owned("boot.kernel_params", None if params is None else desired)

    def _apply_swap(self, device: str, entry: Optional[Dict[str, Any]]) -> None:
        path = self._host_path(device)
        active = device in parse_swaps(read_file_safe(self._host_path("/proc/swaps")) or "")
        fstab_path = self._host_path("/etc/fstab")
        fstab = read_file_safe(fstab_path) or ""
        if entry is None:
            if active:
                self._run(["swapoff", device])
            write_file_safe(fstab_path, render_fstab(fstab, device, present=False))
            return
        size = entry.get("size_mib")
        if size and not (path.is_file() and path.stat().st_size == size * MIB):
            if active:
                self._run(["swapoff", device])
                active = False
            remove_file_safe(path)
            self._run(["fallocate", "-l", f"{size}M", device])
            self._run(["chmod", "600", device])
            self._run(["mkswap", device])
        if not active:
            self._run(["swapon", device])
        write_file_safe(fstab_path, render_fstab(fstab, device, present=True))

    def _require_firewall(self) -> str:
        tool = self._firewall_tool()
        if tool is None:
            raise RuntimeError("no se encontró ufw ni firewalld en el host")
        return tool

    def _apply_firewall_enable(self, enable: Optional[bool]) -> None:
        if enable is None:
            return
        if self._require_firewall() == "ufw":
            self._run(["ufw", "--force", "enable"] if enable else ["ufw", "disable"])
        else:
            self._run(["systemctl", "enable" if enable else "disable", "--now", "firewalld.service"])

    def _apply_firewall_ports(self, key: str, ports: Optional[List[int]]) -> None:
        tool = self._require_firewall()
        state = self._firewall_state()
        if state is None:
            raise RuntimeError(f"no se pudo leer el estado de {tool}")
        proto = FIREWALL_PORT_KEYS[key]
        open_ports = set(state[1][proto])
        desired = set(ports or [])
        previous = set(self._owned().get(key, []))
        commands = [_port_command(tool, "add", port, proto) for port in sorted(desired - open_ports)]
        commands += [_port_command(tool, "remove", port, proto) for port in sorted((previous - desired) & open_ports)]
        for command in commands:
            self._run(command)
        if commands and tool == "firewalld":
            self._run(["firewall-cmd", "--reload"])
        self._set_owned(key, None if ports is None else sorted(desired))

    def _apply_locale(self, name: str, value: Optional[str]) -> None:
        # set-locale reemplaza el conjunto completo: se envían todas las variables
        variables = self._locale_variables()
        if value is None:
            variables.pop(name, None)
        else:
            variables[name] = str(value)
        if not variables:
            return
        self._run(["localectl", "set-locale"] + [f"{k}={v}" for k, v in sorted(variables.items())])


def _port_command(tool: str, op: str, port: int, proto: str) -> List[str]:
    rule = f"{port}/{proto}"
    if tool == "ufw":
        return ["ufw", "allow", rule] if op == "add" else ["ufw", "delete", "allow", rule]
    return ["firewall-cmd", "--permanent", f"--{op}-port={rule}"]
