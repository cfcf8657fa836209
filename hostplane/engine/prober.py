"""
State Prober: captura el estado vivo del host en un ObservedState inmutable.

Los probes por categoría corren en paralelo (trabajo de I/O independiente) y se
fusionan en orden fijo. Un probe que falla degrada su categoría a Unknown y deja
un warning; nunca aborta la reconciliación.
"""

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional, Set

from rich.console import Console
from rich.markup import escape

from hostplane.core.errors import ProbeError
from hostplane.core.infra.contracts import HostBackend
from hostplane.core.plan.actions import fact_key
from hostplane.core.runtime.state import HostIdentity, ObservedState


class StateProber:
    def __init__(self, backend: HostBackend, console: Optional[Console] = None, max_workers: Optional[int] = None):
        self.backend = backend
        self.console = console
        self.max_workers = max_workers

    def _probe_one(self, category: str, identity: HostIdentity) -> Dict[str, Any]:
        if not self.backend.applicable(category, identity):
            raise ProbeError(category, f"no aplica en {identity.system}/{identity.architecture}")
        return self.backend.probe(category)

    def probe(self, identity: Optional[HostIdentity] = None) -> ObservedState:
        """Sondea todas las categorías del backend; nunca lanza por fallos de probe."""
        identity = identity or HostIdentity.detect()
        categories = tuple(self.backend.categories)
        workers = self.max_workers or max(1, len(categories))

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="probe") as pool:
            futures = {c: pool.submit(self._probe_one, c, identity) for c in categories}

        facts: Dict[str, Any] = {}
        unknown: Set[str] = set()
        warnings: List[str] = []
        for category in categories:
            try:
                result = futures[category].result()
            except (ProbeError, OSError) as e:
                error = e if isinstance(e, ProbeError) else ProbeError(category, e)
                unknown.add(category)
                warnings.append(str(error))
                if self.console:
                    self.console.print(f"[yellow]⚠ {escape(str(error))} (estado Unknown)[/yellow]")
                continue
            for identifier in sorted(result):
                facts[fact_key(category, identifier)] = result[identifier]

        return ObservedState(
            facts=facts,
            unknown=frozenset(unknown),
            warnings=tuple(warnings),
            identity=identity,
        )
