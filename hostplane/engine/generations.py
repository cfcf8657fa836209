"""
Generation Store: historial lineal y append-only de reconciliaciones exitosas.

Layout bajo el state root (ver core.runtime.resolver.state_root):
    generations/gen-<id>.json   una generación por archivo, nunca se reescribe
    active                      id de la generación activa
    failed/attempt-<run>.json   intentos fallidos o cancelados (nunca se commitean)
    lock                        lock exclusivo de reconciliación (fcntl)

Cada generación embebe el DesiredState completo: el rollback no relee el descriptor.
"""

import fcntl
import json
import os
import re
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Literal, Optional

from pydantic import BaseModel, Field
from rich.console import Console

from hostplane.core.descriptor.models import DesiredState
from hostplane.core.errors import GenerationNotFound, LockError
from hostplane.core.plan.actions import Action
from hostplane.core.plan.differ import compute_actions
from hostplane.core.runtime.state import ObservedState
from hostplane.engine.executor import RunRecord

GEN_RE = re.compile(r"^gen-(\d+)\.json$")


class Generation(BaseModel):
    """Registro inmutable de una reconciliación exitosa."""
    id: int
    parent_id: Optional[int] = None
    desired_hash: str
    desired: Dict[str, Any] = Field(..., description="DesiredState completo (dump JSON)")
    created_at: str
    actions: List[Action] = Field(default_factory=list)
    success: bool = True
    reason: Literal["apply", "rollback"] = "apply"
    source: Optional[str] = Field(None, description="Descriptor de origen (informativo)")
    rolled_back_to: Optional[int] = None

    class Config:
        frozen = True

    def desired_state(self) -> DesiredState:
        return DesiredState.model_validate(self.desired)

    @property
    def created(self) -> datetime:
        return datetime.fromisoformat(self.created_at)


class FailedAttempt(BaseModel):
    """Intento fallido: el RunRecord más el hash que se intentaba alcanzar."""
    desired_hash: str
    reason: Literal["apply", "rollback"] = "apply"
    record: RunRecord


def _write_json_atomic(path: Path, data: Dict[str, Any]) -> None:
    tmp = path.with_name(f".{path.name}.tmp")
    with open(tmp, "w") as f:
        json.dump(data, f, indent=2, sort_keys=True)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)


class GenerationHistory:
    """
    Vista perezosa del historial, más reciente primero.
    Cada iteración vuelve a listar el directorio y carga los archivos de a uno.
    """

    def __init__(self, store: "GenerationStore"):
        self._store = store

    def __iter__(self) -> Iterator[Generation]:
        for generation_id in self._store.ids():
            try:
                yield self._store.get(generation_id)
            except GenerationNotFound:
                # Eliminada por gc entre el listado y la lectura
                continue

    def __len__(self) -> int:
        return len(self._store.ids())


class GenerationStore:
    def __init__(self, root: Path, console: Optional[Console] = None):
        self.root = Path(root)
        self.console = console
        self.generations_dir = self.root / "generations"
        self.failed_dir = self.root / "failed"
        self.active_path = self.root / "active"
        self.lock_path = self.root / "lock"

    def _ensure(self) -> None:
        self.generations_dir.mkdir(parents=True, exist_ok=True)
        self.failed_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, generation_id: int) -> Path:
        return self.generations_dir / f"gen-{generation_id}.json"

    # --- lectura ---

    def ids(self) -> List[int]:
        """Ids existentes, más reciente primero."""
        if not self.generations_dir.exists():
            return []
        ids = []
        for entry in self.generations_dir.iterdir():
            m = GEN_RE.match(entry.name)
            if m:
                ids.append(int(m.group(1)))
        return sorted(ids, reverse=True)

    def get(self, generation_id: int) -> Generation:
        path = self._path(generation_id)
        try:
            with open(path) as f:
                return Generation.model_validate(json.load(f))
        except FileNotFoundError:
            raise GenerationNotFound(generation_id) from None

    def active_id(self) -> Optional[int]:
        try:
            text = self.active_path.read_text().strip()
        except FileNotFoundError:
            return None
        return int(text) if text else None

    def active(self) -> Optional[Generation]:
        generation_id = self.active_id()
        return self.get(generation_id) if generation_id is not None else None

    def list(self) -> GenerationHistory:
        return GenerationHistory(self)

    # --- escritura ---

    def _next_id(self) -> int:
        ids = self.ids()
        return (ids[0] + 1) if ids else 1

    def commit(
        self,
        desired: DesiredState,
        actions: List[Action],
        reason: str = "apply",
        source: Optional[str] = None,
        rolled_back_to: Optional[int] = None,
    ) -> Generation:
        """Registra una reconciliación exitosa y la marca como activa."""
        self._ensure()
        generation = Generation(
            id=self._next_id(),
            parent_id=self.active_id(),
            desired_hash=desired.content_hash(),
            desired=desired.model_dump(mode="json"),
            created_at=datetime.now(timezone.utc).isoformat(),
            actions=list(actions),
            reason=reason,
            source=source,
            rolled_back_to=rolled_back_to,
        )
        path = self._path(generation.id)
        if path.exists():
            raise FileExistsError(f"la generación {generation.id} ya existe: {path}")
        _write_json_atomic(path, generation.model_dump(mode="json"))
        tmp = self.active_path.with_name(".active.tmp")
        tmp.write_text(f"{generation.id}\n")
        os.replace(tmp, self.active_path)
        if self.console:
            self.console.print(f"[green]✔ Generación {generation.id} activa[/green] [dim]({generation.desired_hash[:12]})[/dim]")
        return generation

    def rollback(self, generation_id: int, observed: ObservedState) -> List[Action]:
        """
        Acciones para volver al DesiredState guardado en 'generation_id'.
        'observed.managed' debe reflejar la generación activa para que se remueva
        lo que la generación destino no declara.
        """
        target = self.get(generation_id)
        return compute_actions(target.desired_state(), observed)

    def collect_garbage(self, keep: int = 3, older_than_days: Optional[float] = None) -> List[int]:
        """
        Elimina generaciones viejas. Conserva siempre las 'keep' más recientes y la activa.
        Con 'older_than_days' solo elimina las creadas antes de ese umbral.
        """
        if keep < 1:
            raise ValueError("keep debe ser >= 1")
        active_id = self.active_id()
        cutoff = None
        if older_than_days is not None:
            cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)
        removed = []
        for generation_id in self.ids()[keep:]:
            if generation_id == active_id:
                continue
            if cutoff is not None and self.get(generation_id).created >= cutoff:
                continue
            self._path(generation_id).unlink(missing_ok=True)
            removed.append(generation_id)
        if removed and self.console:
            self.console.print(f"[dim]gc: {len(removed)} generaciones eliminadas[/dim]")
        return sorted(removed)

    def prune_failures(self, keep: int = 3, older_than_days: Optional[float] = None) -> int:
        """
        Elimina intentos fallidos viejos con la política de collect_garbage: conserva los
        'keep' más recientes y, con 'older_than_days', solo borra los anteriores al umbral.
        """
        if keep < 1:
            raise ValueError("keep debe ser >= 1")
        cutoff = None
        if older_than_days is not None:
            cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)
        removed = 0
        for attempt in self.failures()[keep:]:
            if cutoff is not None and datetime.fromisoformat(attempt.record.started_at) >= cutoff:
                continue
            (self.failed_dir / f"attempt-{attempt.record.run_id}.json").unlink(missing_ok=True)
            removed += 1
        if removed and self.console:
            self.console.print(f"[dim]gc: {removed} intentos fallidos eliminados[/dim]")
        return removed

    def record_failure(self, record: RunRecord, desired_hash: str, reason: str = "apply") -> Path:
        """Registra un intento fallido/cancelado; no toca el historial ni la activa."""
        self._ensure()
        attempt = FailedAttempt(desired_hash=desired_hash, reason=reason, record=record)
        path = self.failed_dir / f"attempt-{record.run_id}.json"
        _write_json_atomic(path, attempt.model_dump(mode="json"))
        return path

    def failures(self) -> List[FailedAttempt]:
        """Intentos fallidos, más reciente primero."""
        if not self.failed_dir.exists():
            return []
        attempts = []
        for path in self.failed_dir.glob("attempt-*.json"):
            with open(path) as f:
                attempts.append(FailedAttempt.model_validate(json.load(f)))
        return sorted(attempts, key=lambda a: a.record.started_at, reverse=True)

    @contextmanager
    def lock(self):
        """Lock exclusivo y no bloqueante: una sola reconciliación por host."""
        self.root.mkdir(parents=True, exist_ok=True)
        handle = open(self.lock_path, "a+")
        try:
            try:
                fcntl.flock(handle, fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                raise LockError(f"otra reconciliación mantiene el lock: {self.lock_path}") from None
            handle.seek(0)
            handle.truncate()
            handle.write(str(os.getpid()))
            handle.flush()
            try:
                yield self
            finally:
                fcntl.flock(handle, fcntl.LOCK_UN)
        finally:
            handle.close()
