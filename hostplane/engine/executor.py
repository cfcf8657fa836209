"""
Action Executor: aplica acciones en orden, estrictamente secuencial.

Fail-halt: ante el primer fallo se detiene; lo aplicado queda aplicado (sin rollback
automático) y el resto queda pendiente. La cancelación se consulta antes de la primera
acción y después de cada una; una acción en curso siempre termina y, si hubo
cancelación, la ejecución aborta aunque no queden acciones.
"""

import threading
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field
from rich.console import Console
from rich.markup import escape

from hostplane.core.errors import ActionError, RunCancelled
from hostplane.core.infra.contracts import HostBackend
from hostplane.core.plan.actions import Action


class CancelToken:
    """Señal de cancelación compartida entre la CLI (SIGINT) y el executor."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class OutcomeStatus(str, Enum):
    APPLIED = "applied"
    PENDING = "pending"


class ActionOutcome(BaseModel):
    action: Action
    status: OutcomeStatus = OutcomeStatus.PENDING


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RunRecord(BaseModel):
    """
    Registro de una ejecución. Solo se persiste si la ejecución falla o se cancela.

    failed_index: índice (base 0) de la acción que falló o que no llegó a empezar por
    cancelación; todas las acciones desde ahí quedan 'pending'.
    """
    run_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    started_at: str = Field(default_factory=_now)
    finished_at: Optional[str] = None
    outcomes: List[ActionOutcome] = Field(default_factory=list)
    failed_index: Optional[int] = None
    error: Optional[str] = None
    cancelled: bool = False

    @classmethod
    def start(cls, actions: List[Action]) -> "RunRecord":
        return cls(outcomes=[ActionOutcome(action=a) for a in actions])

    @property
    def applied(self) -> List[Action]:
        return [o.action for o in self.outcomes if o.status == OutcomeStatus.APPLIED]

    @property
    def pending(self) -> List[Action]:
        return [o.action for o in self.outcomes if o.status == OutcomeStatus.PENDING]

    def finish(self) -> "RunRecord":
        self.finished_at = _now()
        return self


class ActionExecutor:
    """Aplica una secuencia de acciones contra un backend de host."""

    def __init__(self, backend: HostBackend, console: Optional[Console] = None):
        self.backend = backend
        self.console = console

    def execute(self, actions: List[Action], token: Optional[CancelToken] = None) -> RunRecord:
        """
        Ejecuta 'actions' en orden.

        Returns:
            RunRecord con todas las acciones 'applied'

        Raises:
            ActionError: una acción falló (record adjunto con aplicadas/pendientes)
            RunCancelled: cancelado antes de empezar o durante una acción (record adjunto)
        """
        record = RunRecord.start(actions)
        total = len(actions)
        self._check_cancel(token, record, 0)
        for index, action in enumerate(actions):
            try:
                self.backend.apply(action)
            except Exception as e:
                record.failed_index = index
                record.error = str(e)
                record.finish()
                if self.console:
                    self.console.print(f"[red]✘ [{index + 1}/{total}] {escape(action.describe())}: {escape(str(e))}[/red]")
                raise ActionError(action.target, e, record) from e
            record.outcomes[index].status = OutcomeStatus.APPLIED
            if self.console:
                self.console.print(f"[green]✔[/green] [{index + 1}/{total}] {escape(action.describe())}")
            self._check_cancel(token, record, index + 1)
        return record.finish()

    def _check_cancel(self, token: Optional[CancelToken], record: RunRecord, index: int) -> None:
        """Aborta si se pidió cancelar; las acciones desde 'index' quedan pendientes."""
        if token is None or not token.cancelled:
            return
        total = len(record.outcomes)
        record.cancelled = True
        record.failed_index = index
        record.finish()
        if self.console:
            self.console.print(f"[yellow]⚠ Cancelado: {total - index} acciones sin aplicar[/yellow]")
        raise RunCancelled(f"ejecución cancelada tras {index}/{total} acciones", record)
