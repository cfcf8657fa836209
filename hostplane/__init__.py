"""
hostplane: reconciliador declarativo del estado de un host.

Capas: core (lógica pura) → engine (prober, executor, generaciones) → providers (backends) → cli.
"""

__version__ = "0.1.0"
