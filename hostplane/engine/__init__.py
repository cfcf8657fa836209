"""
Engine: efectos sobre el host y persistencia (prober, executor, generaciones).

Importa de hostplane.core; el core nunca importa de aquí.
"""

from hostplane.engine.executor import ActionExecutor, CancelToken, RunRecord
from hostplane.engine.generations import Generation, GenerationStore
from hostplane.engine.prober import StateProber
from hostplane.engine.reconciler import Reconciler, ReconcileResult, Watchdog

__all__ = [
    "ActionExecutor",
    "CancelToken",
    "RunRecord",
    "Generation",
    "GenerationStore",
    "StateProber",
    "Reconciler",
    "ReconcileResult",
    "Watchdog",
]
