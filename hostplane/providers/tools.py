"""
Utilidades compartidas por los backends: comandos del sistema y archivos.

A diferencia de la CLI, aquí los fallos se propagan: el Executor convierte
cualquier excepción de un backend en ActionError.
"""

import os
import subprocess
from pathlib import Path
from typing import List, Optional

from rich.console import Console


class CommandError(RuntimeError):
    """Un comando del sistema terminó con error."""

    def __init__(self, command: List[str], stderr: str):
        self.command = command
        self.stderr = stderr.strip()
        super().__init__(f"{' '.join(command)}: {self.stderr or 'falló'}")


def run_command(
    command: List[str],
    cwd: Optional[Path] = None,
    timeout: Optional[int] = None,
    console: Optional[Console] = None,
) -> tuple[bool, str, str]:
    """
    Ejecuta un comando del sistema de forma segura

    Args:
        command: Lista con comando y argumentos
        cwd: Directorio de trabajo
        timeout: Timeout en segundos (None = sin límite; instalar puede tardar minutos)
        console: Console de Rich para salida

    Returns:
        Tuple (success, stdout, stderr)
    """
    try:
        result = subprocess.run(
            command,
            cwd=cwd,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
        return result.returncode == 0, result.stdout, result.stderr
    except subprocess.TimeoutExpired:
        if console:
            console.print(f"[red]✘ Timeout ejecutando: {' '.join(command)}[/red]")
        return False, "", "Timeout"
    except FileNotFoundError:
        if console:
            console.print(f"[red]✘ Comando no encontrado: {command[0]}[/red]")
        return False, "", f"Comando no encontrado: {command[0]}"


def check_command(command: List[str], timeout: Optional[int] = None, console: Optional[Console] = None) -> str:
    """Como run_command, pero lanza CommandError si falla. Devuelve stdout."""
    ok, stdout, stderr = run_command(command, timeout=timeout, console=console)
    if not ok:
        raise CommandError(command, stderr)
    return stdout


def read_file_safe(path: Path) -> Optional[str]:
    """Contenido del archivo, o None si no existe. Otros errores se propagan."""
    try:
        return path.read_text()
    except FileNotFoundError:
        return None


def write_file_safe(path: Path, content: str, mode: int = 0o644) -> None:
    """Escritura atómica (tmp + replace) creando los directorios padre."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.hostplane-tmp")
    tmp.write_text(content)
    os.chmod(tmp, mode)
    os.replace(tmp, path)


def remove_file_safe(path: Path) -> bool:
    """Elimina un archivo; False si ya no existía."""
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
