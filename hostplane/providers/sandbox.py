"""
Backend sandbox: un host simulado en un archivo JSON.

Sirve para ensayar una reconciliación completa sin tocar el sistema y para tests.

Formato:
    {
      "facts": {"service:ollama": false, "package:git": true, ...},
      "fail_on": ["package:nvidia-x11"],     # claves u objetivos cuya acción falla
      "broken_probes": ["service"]           # categorías cuyo probe falla
    }
"""

import json
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from rich.console import Console

from hostplane.core.errors import ProbeError
from hostplane.core.infra.base import BaseBackend
from hostplane.core.infra.contracts import PROBE_CATEGORIES
from hostplane.core.plan.actions import Action, ActionKind, split_key
from hostplane.core.runtime.state import HostIdentity
from hostplane.providers.tools import read_file_safe, write_file_safe


class SandboxBackend(BaseBackend):
    name = "sandbox"

    def __init__(self, path: Path, console: Optional[Console] = None):
        self.path = Path(path)
        self.console = console
        self._lock = threading.Lock()

    @property
    def categories(self):
        return PROBE_CATEGORIES

    def applicable(self, category: str, identity: HostIdentity) -> bool:
        # El host simulado es siempre un Linux completo
        return True

    def load(self) -> Dict[str, Any]:
        with self._lock:
            text = read_file_safe(self.path)
        data = json.loads(text) if text else {}
        data.setdefault("facts", {})
        data.setdefault("fail_on", [])
        data.setdefault("broken_probes", [])
        return data

    def save(self, data: Dict[str, Any]) -> None:
        with self._lock:
            write_file_safe(self.path, json.dumps(data, indent=2, sort_keys=True) + "\n")

    @property
    def facts(self) -> Dict[str, Any]:
        return self.load()["facts"]

    def probe(self, category: str) -> Dict[str, Any]:
        data = self.load()
        if category in data["broken_probes"]:
            raise ProbeError(category, "probe simulado roto")
        out = {}
        for key, value in data["facts"].items():
            fact_category, identifier = split_key(key)
            if fact_category == category:
                out[identifier] = value
        return out

    def apply(self, action: Action) -> None:
        data = self.load()
        if action.key in data["fail_on"] or action.target in data["fail_on"]:
            raise RuntimeError(f"fallo simulado en {action.key}")
        facts = data["facts"]
        if action.kind == ActionKind.DISABLE_SERVICE:
            # La unidad sigue instalada, solo deshabilitada
            facts[action.key] = False
        elif action.after is None:
            facts.pop(action.key, None)
        else:
            facts[action.key] = action.after
        self.save(data)
        if self.console:
            self.console.print(f"[dim]sandbox: {action.describe()}[/dim]")
