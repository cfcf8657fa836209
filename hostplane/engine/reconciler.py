"""
Reconciler: orquesta una reconciliación completa.

    lock → (Loader ∥ Prober) → guardas de host → Diff Engine → Executor → commit

Una generación nueva solo se registra si el Executor terminó todas las acciones.
Un intento fallido o cancelado queda en failed/ y la generación activa no cambia.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional

from rich.console import Console

from hostplane.core.descriptor.catalog import PackageCatalog
from hostplane.core.descriptor.loader import load_descriptor
from hostplane.core.descriptor.models import DesiredState
from hostplane.core.errors import ActionError, RunCancelled, ValidationError
from hostplane.core.infra.contracts import HostBackend
from hostplane.core.plan.actions import Action
from hostplane.core.plan.differ import compute_actions
from hostplane.core.plan.facts import managed_keys
from hostplane.core.plan.planner import PlanResult
from hostplane.core.runtime.state import HostIdentity, ObservedState
from hostplane.engine.executor import ActionExecutor, CancelToken, RunRecord
from hostplane.engine.generations import Generation, GenerationStore
from hostplane.engine.prober import StateProber


class Watchdog:
    """Avisa periódicamente de una ejecución larga; nunca la interrumpe."""

    def __init__(self, interval: float, console: Optional[Console] = None, label: str = "reconciliación"):
        self.interval = interval
        self.console = console
        self.label = label
        self.warnings = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._started = 0.0

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            self.warnings += 1
            elapsed = time.monotonic() - self._started
            if self.console:
                self.console.print(f"[yellow]⚠ {self.label} en curso hace {elapsed:.0f}s (sin límite; no se interrumpe)[/yellow]")

    def __enter__(self) -> "Watchdog":
        self._started = time.monotonic()
        self._thread = threading.Thread(target=self._run, name="hostplane-watchdog", daemon=True)
        self._thread.start()
        return self

    def __exit__(self, *exc) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join()


class ReconcileResult:
    """Resultado de apply/rollback."""
    def __init__(
        self,
        actions: List[Action],
        generation: Optional[Generation],
        changed: bool,
        record: Optional[RunRecord] = None,
        observed: Optional[ObservedState] = None,
    ):
        self.actions = actions
        self.generation = generation
        self.changed = changed
        self.record = record
        self.observed = observed


def check_host(desired: DesiredState, identity: HostIdentity, source: str = "<descriptor>") -> None:
    """Rechaza un descriptor pensado para otra máquina (antes de cualquier efecto)."""
    errors = []
    if desired.host.hostname and desired.host.hostname != identity.hostname:
        errors.append(f"host.hostname: el descriptor es para '{desired.host.hostname}', este host es '{identity.hostname}'")
    if desired.host.architecture and desired.host.architecture != identity.architecture:
        errors.append(
            f"host.architecture: el descriptor es para '{desired.host.architecture}', este host es '{identity.architecture}'"
        )
    if errors:
        raise ValidationError(errors, source)


class Reconciler:
    def __init__(
        self,
        backend: HostBackend,
        store: GenerationStore,
        console: Optional[Console] = None,
        identity: Optional[HostIdentity] = None,
        catalog: Optional[PackageCatalog] = None,
        watchdog_seconds: float = 600.0,
    ):
        self.backend = backend
        self.store = store
        self.console = console
        self.identity = identity or HostIdentity.detect()
        self.catalog = catalog
        self.watchdog_seconds = watchdog_seconds
        self.prober = StateProber(backend, console=console)
        self.executor = ActionExecutor(backend, console=console)

    def _managed(self, observed: ObservedState) -> ObservedState:
        active = self.store.active()
        managed = managed_keys(active.desired_state()) if active is not None else {}
        return observed.with_managed({k: s.value for k, s in managed.items()})

    def _load_and_probe(self, descriptor: Path):
        """Loader y Prober en paralelo; el Diff Engine espera a ambos."""
        with ThreadPoolExecutor(max_workers=2, thread_name_prefix="reconcile") as pool:
            desired_future = pool.submit(load_descriptor, descriptor, self.catalog)
            observed_future = pool.submit(self.prober.probe, self.identity)
            desired = desired_future.result()
            observed = observed_future.result()
        check_host(desired, self.identity, str(descriptor))
        return desired, self._managed(observed)

    def plan(self, descriptor: Path) -> PlanResult:
        """Calcula el plan sin ejecutar ni tomar el lock (diff)."""
        desired, observed = self._load_and_probe(Path(descriptor))
        return PlanResult(desired, observed, compute_actions(desired, observed))

    def apply(self, descriptor: Path, token: Optional[CancelToken] = None) -> ReconcileResult:
        descriptor = Path(descriptor)
        with self.store.lock():
            desired, observed = self._load_and_probe(descriptor)
            actions = compute_actions(desired, observed)
            return self._execute(desired, observed, actions, token, reason="apply", source=str(descriptor))

    def rollback(self, generation_id: int, token: Optional[CancelToken] = None) -> ReconcileResult:
        with self.store.lock():
            target = self.store.get(generation_id)
            desired = target.desired_state()
            check_host(desired, self.identity, f"generación {generation_id}")
            observed = self._managed(self.prober.probe(self.identity))
            actions = self.store.rollback(generation_id, observed)
            return self._execute(
                desired,
                observed,
                actions,
                token,
                reason="rollback",
                source=target.source,
                rolled_back_to=generation_id,
            )

    def _execute(
        self,
        desired: DesiredState,
        observed: ObservedState,
        actions: List[Action],
        token: Optional[CancelToken],
        reason: str,
        source: Optional[str] = None,
        rolled_back_to: Optional[int] = None,
    ) -> ReconcileResult:
        if token is not None and token.cancelled:
            raise RunCancelled("ejecución cancelada antes de aplicar acciones")

        active = self.store.active()
        if not actions and active is not None and active.desired_hash == desired.content_hash():
            return ReconcileResult(actions, active, changed=False, observed=observed)

        record = None
        if actions:
            with Watchdog(self.watchdog_seconds, self.console, label=reason):
                try:
                    record = self.executor.execute(actions, token)
                except (ActionError, RunCancelled) as e:
                    if e.record is not None:
                        path = self.store.record_failure(e.record, desired.content_hash(), reason)
                        if self.console:
                            self.console.print(f"[dim]Intento registrado en {path}[/dim]")
                    raise

        generation = self.store.commit(desired, actions, reason=reason, source=source, rolled_back_to=rolled_back_to)
        return ReconcileResult(actions, generation, changed=True, record=record, observed=observed)
