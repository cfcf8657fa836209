"""
Aplicación CLI de hostplane.

Solo compone comandos y formatea salida; la lógica vive en core, engine y providers.
Los errores del core se traducen a códigos de salida (ver hostplane.core.errors).
"""

import signal
from contextlib import contextmanager
from pathlib import Path
from typing import List, Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from hostplane import __version__
from hostplane.core.descriptor.loader import load_descriptor
from hostplane.core.errors import ActionError, HostplaneError, RunCancelled, ValidationError
from hostplane.core.plan.actions import Action
from hostplane.core.plan.planner import PlanResult
from hostplane.core.runtime.resolver import RuntimeSettings, load_settings
from hostplane.engine.executor import CancelToken, RunRecord
from hostplane.engine.generations import Generation, GenerationStore
from hostplane.engine.reconciler import Reconciler
from hostplane.providers import get_backend

app = typer.Typer(
    name="hostplane",
    help="hostplane - Reconciliador declarativo del estado de un host",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()


@app.callback()
def main_options(
    ctx: typer.Context,
    state_root: Optional[Path] = typer.Option(None, "--state-root", help="Directorio de estado (HOSTPLANE_STATE_ROOT)"),
    backend: Optional[str] = typer.Option(None, "--backend", "-b", help="system | sandbox (HOSTPLANE_BACKEND)"),
    sandbox_file: Optional[Path] = typer.Option(None, "--sandbox-file", help="Host simulado (HOSTPLANE_SANDBOX_FILE)"),
):
    """Opciones globales; tienen prioridad sobre .env y variables HOSTPLANE_*."""
    env_file = Path.cwd() / ".env"
    if env_file.exists():
        load_dotenv(env_file)
    try:
        ctx.obj = load_settings({"state_root": state_root, "backend": backend, "sandbox_file": sandbox_file})
    except HostplaneError as e:
        _fail(e)


def _settings(ctx: typer.Context) -> RuntimeSettings:
    return ctx.obj if isinstance(ctx.obj, RuntimeSettings) else load_settings()


def _store(settings: RuntimeSettings) -> GenerationStore:
    return GenerationStore(settings.state_root, console=console)


def _reconciler(settings: RuntimeSettings) -> Reconciler:
    return Reconciler(
        get_backend(settings, console=console),
        _store(settings),
        console=console,
        watchdog_seconds=settings.watchdog_seconds,
    )


@contextmanager
def _sigint_cancels(token: CancelToken):
    """Ctrl+C marca el token; la acción en curso termina antes de abortar."""
    def handler(signum, frame):
        console.print("[yellow]⚠ Cancelación solicitada: se detiene al terminar la acción en curso[/yellow]")
        token.cancel()

    previous = signal.signal(signal.SIGINT, handler)
    try:
        yield token
    finally:
        signal.signal(signal.SIGINT, previous)


def _record_panel(record: RunRecord, title: str) -> Panel:
    lines: List[str] = []
    for index, outcome in enumerate(record.outcomes):
        if outcome.status.value == "applied":
            lines.append(f"[green]✔ applied[/green]  {escape(outcome.action.describe())}")
        elif index == record.failed_index and not record.cancelled:
            lines.append(f"[red]✘ failed[/red]   {escape(outcome.action.describe())}")
        else:
            lines.append(f"[yellow]… pending[/yellow]  {escape(outcome.action.describe())}")
    body = "\n".join(lines) or "[dim]Sin acciones[/dim]"
    if record.error:
        body += f"\n\n[bold]Causa:[/bold] {escape(record.error)}"
    return Panel(body, title=title, border_style="red")


def _fail(e: HostplaneError) -> None:
    if isinstance(e, ActionError) and e.record is not None:
        console.print(_record_panel(
            e.record,
            f"[bold red]✘ Acción fallida: {e.target} (host en estado mixto)[/bold red]",
        ))
        console.print(f"[dim]{len(e.record.applied)} aplicadas, {len(e.record.pending)} pendientes. "
                      "No se registró generación; reintenta con 'hostplane apply'.[/dim]")
    elif isinstance(e, RunCancelled) and e.record is not None:
        console.print(_record_panel(e.record, "[bold yellow]⚠ Ejecución cancelada[/bold yellow]"))
    elif isinstance(e, ValidationError):
        console.print(f"[red]✘ Descriptor inválido ({e.source}):[/red]")
        for message in e.errors:
            console.print(f"  [red]•[/red] {escape(message)}")
    else:
        console.print(f"[red]✘ {escape(str(e))}[/red]")
    raise typer.Exit(code=e.exit_code)


def _actions_table(actions: List[Action], title: str) -> Table:
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Subsistema", style="cyan", no_wrap=True)
    table.add_column("Acción", style="yellow", no_wrap=True)
    table.add_column("Objetivo", style="green")
    table.add_column("Antes", style="dim")
    table.add_column("Después")
    for i, action in enumerate(actions, 1):
        table.add_row(
            str(i),
            action.subsystem.value,
            action.kind.value,
            action.target,
            "" if action.before is None else escape(str(action.before)),
            "∅" if action.after is None else escape(str(action.after)),
        )
    return table


def _print_plan(result: PlanResult) -> None:
    for warning in result.observed.warnings:
        console.print(f"[yellow]⚠ {escape(warning)}[/yellow]")
    if result.empty:
        console.print(f"[green]✔ {result.summary}[/green]")
        return
    console.print(_actions_table(result.actions, "Plan de reconciliación"))
    console.print(f"[bold]{result.summary}[/bold]")


@app.command()
def apply(
    ctx: typer.Context,
    descriptor: Optional[Path] = typer.Argument(None, help="Descriptor YAML (por defecto: HOSTPLANE_DESCRIPTOR)"),
):
    """
    Reconcilia el host con el descriptor y registra una generación nueva

    Ejemplos:
        hostplane apply                       # Usa /etc/hostplane/host.yaml
        hostplane -b sandbox apply host.yaml  # Ensayo contra un host simulado
    """
    settings = _settings(ctx)
    path = descriptor or settings.descriptor
    console.print(Panel.fit(f"[bold cyan]Apply[/bold cyan] [dim]{path}[/dim]", border_style="cyan"))
    try:
        with _sigint_cancels(CancelToken()) as token:
            result = _reconciler(settings).apply(path, token)
    except HostplaneError as e:
        _fail(e)
    if not result.changed:
        console.print(f"[green]✔ Sin cambios; generación activa: {result.generation.id}[/green]")
    else:
        console.print(f"[bold green]✔ {len(result.actions)} acciones aplicadas → generación {result.generation.id}[/bold green]")


@app.command()
def diff(
    ctx: typer.Context,
    descriptor: Optional[Path] = typer.Argument(None, help="Descriptor YAML (por defecto: HOSTPLANE_DESCRIPTOR)"),
):
    """Muestra las acciones que aplicaría 'apply', sin ejecutar nada"""
    settings = _settings(ctx)
    try:
        result = _reconciler(settings).plan(descriptor or settings.descriptor)
    except HostplaneError as e:
        _fail(e)
    _print_plan(result)


@app.command()
def rollback(
    ctx: typer.Context,
    generation_id: int = typer.Argument(..., help="Generación a restaurar"),
):
    """Vuelve al estado deseado de una generación anterior (crea una generación nueva)"""
    settings = _settings(ctx)
    console.print(Panel.fit(f"[bold cyan]Rollback → generación {generation_id}[/bold cyan]", border_style="cyan"))
    try:
        with _sigint_cancels(CancelToken()) as token:
            result = _reconciler(settings).rollback(generation_id, token)
    except HostplaneError as e:
        _fail(e)
    if not result.changed:
        console.print(f"[green]✔ El host ya está en el estado de la generación {generation_id}[/green]")
    else:
        console.print(f"[bold green]✔ Rollback aplicado → generación {result.generation.id}[/bold green]")


def _generation_row(generation: Generation, active_id: Optional[int]) -> List[str]:
    origin = generation.source or ""
    if generation.rolled_back_to is not None:
        origin = f"rollback a {generation.rolled_back_to}"
    return [
        str(generation.id),
        "●" if generation.id == active_id else "",
        generation.created_at[:19].replace("T", " "),
        generation.reason,
        generation.desired_hash[:12],
        str(len(generation.actions)),
        origin,
    ]


@app.command("list-generations")
def list_generations(ctx: typer.Context):
    """Lista el historial de generaciones (más reciente primero)"""
    store = _store(_settings(ctx))
    active_id = store.active_id()
    table = Table(title="Generaciones", show_header=True, header_style="bold cyan")
    for column in ("ID", "Activa", "Fecha (UTC)", "Motivo", "Hash", "Acciones", "Origen"):
        table.add_column(column)
    rows = 0
    for generation in store.list():
        table.add_row(*_generation_row(generation, active_id))
        rows += 1
    if not rows:
        console.print("[yellow]⚠ Sin generaciones registradas[/yellow]")
        return
    console.print(table)


@app.command()
def show(ctx: typer.Context, generation_id: int = typer.Argument(..., help="ID de la generación")):
    """Muestra el detalle de una generación"""
    store = _store(_settings(ctx))
    try:
        generation = store.get(generation_id)
    except HostplaneError as e:
        _fail(e)
    console.print(Panel.fit(
        f"[bold cyan]Generación {generation.id}[/bold cyan]\n\n"
        f"[bold]Padre:[/bold] {generation.parent_id if generation.parent_id is not None else '-'}\n"
        f"[bold]Fecha:[/bold] {generation.created_at}\n"
        f"[bold]Motivo:[/bold] {generation.reason}\n"
        f"[bold]Hash:[/bold] {generation.desired_hash}\n"
        f"[bold]Origen:[/bold] {generation.source or '-'}\n"
        f"[bold]Activa:[/bold] {'sí' if generation.id == store.active_id() else 'no'}",
        border_style="cyan",
    ))
    if generation.actions:
        console.print(_actions_table(generation.actions, "Acciones ejecutadas"))


@app.command()
def failures(ctx: typer.Context):
    """Lista los intentos fallidos o cancelados (nunca registrados como generación)"""
    attempts = _store(_settings(ctx)).failures()
    if not attempts:
        console.print("[green]✔ Sin intentos fallidos[/green]")
        return
    table = Table(title="Intentos fallidos", show_header=True, header_style="bold red")
    for column in ("Run", "Fecha (UTC)", "Motivo", "Aplicadas", "Pendientes", "Error"):
        table.add_column(column)
    for attempt in attempts:
        record = attempt.record
        table.add_row(
            record.run_id,
            record.started_at[:19].replace("T", " "),
            attempt.reason,
            str(len(record.applied)),
            str(len(record.pending)),
            "cancelado" if record.cancelled else (record.error or ""),
        )
    console.print(table)


@app.command()
def gc(
    ctx: typer.Context,
    keep: Optional[int] = typer.Option(None, "--keep", "-k", help="Generaciones recientes a conservar (HOSTPLANE_GC_KEEP)"),
    older_than: Optional[float] = typer.Option(None, "--older-than", help="Solo eliminar generaciones con más de N días"),
):
    """Elimina generaciones e intentos fallidos viejos; nunca la generación activa"""
    settings = _settings(ctx)
    store = _store(settings)
    try:
        with store.lock():
            removed = store.collect_garbage(keep=keep or settings.gc_keep, older_than_days=older_than)
            attempts = store.prune_failures(keep=keep or settings.gc_keep, older_than_days=older_than)
    except HostplaneError as e:
        _fail(e)
    if removed:
        console.print(f"[green]✔ Eliminadas: {', '.join(str(i) for i in removed)}[/green]")
    if attempts:
        console.print(f"[green]✔ Intentos fallidos eliminados: {attempts}[/green]")
    if not removed and not attempts:
        console.print("[dim]Nada que eliminar[/dim]")


@app.command()
def validate(
    ctx: typer.Context,
    descriptor: Optional[Path] = typer.Argument(None, help="Descriptor YAML (por defecto: HOSTPLANE_DESCRIPTOR)"),
):
    """Valida un descriptor sin sondear ni modificar el host"""
    path = descriptor or _settings(ctx).descriptor
    try:
        state = load_descriptor(path)
    except HostplaneError as e:
        _fail(e)
    console.print(f"[green]✔ Descriptor válido:[/green] {path}")
    console.print(
        f"[dim]{len(state.services)} servicios, {len(state.users)} usuarios, "
        f"{len(state.packages)} paquetes, {len(state.drivers.devices)} drivers · "
        f"hash {state.content_hash()[:12]}[/dim]"
    )


@app.command()
def version(ctx: typer.Context):
    """Muestra la versión de hostplane"""
    settings = _settings(ctx)
    console.print(Panel.fit(
        "[bold cyan]hostplane[/bold cyan]\n"
        "[dim]Reconciliador declarativo del estado de un host[/dim]\n\n"
        f"[bold]Versión:[/bold] {__version__}\n"
        f"[bold]Estado:[/bold] {settings.state_root}\n"
        f"[bold]Backend:[/bold] {settings.backend}",
        border_style="cyan",
    ))


def main():
    app()
