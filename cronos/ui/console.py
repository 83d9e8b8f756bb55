"""Console UI for Cronos."""
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional, Tuple

from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from cronos.core.models import ActionResult, ContainerMetrics, ContainerRecord, Event, ServiceHealth

STATUS_STYLES = {
    'running': 'green',
    'paused': 'yellow',
    'restarting': 'yellow',
    'created': 'blue',
    'stopped': 'red',
    'exited': 'red',
    'dead': 'red',
    'removed': 'dim',
}

HEALTH_STYLES = {
    'healthy': '[green]✓ healthy',
    'unhealthy': '[red]✗ unhealthy',
    'unknown': '[yellow]⚠ starting',
}

NODE_STYLES = {
    'started': '[green]✓ started',
    'already_running': '[blue]• already running',
    'failed': '[red]✗ failed',
    'skipped': '[dim]- skipped',
}


def format_bytes(value: float) -> str:
    for unit in ('B', 'KiB', 'MiB', 'GiB'):
        if abs(value) < 1024:
            return f"{value:.1f}{unit}"
        value /= 1024
    return f"{value:.1f}TiB"


class ConsoleUI:
    """UI class for console output."""
    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def print_error(self, error, show_traceback=False):
        """Print error message."""
        self.console.print(f"[red]Error:[/red] {error}")
        if show_traceback:
            self.console.print_exception()

    def print_warning(self, message: str):
        self.console.print(f"[yellow]Warning:[/yellow] {message}")

    def print_success(self, message: str):
        self.console.print(f"[green]{message}[/green]")

    @contextmanager
    def show_progress(self, title):
        """Show progress indicator."""
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=self.console,
            transient=True,
        ) as progress:
            task = progress.add_task(title, total=None)
            yield progress
            progress.update(task, completed=1)

    def print_engine_status(self, status: str, engine: str):
        if status == 'offline':
            self.console.print(Panel(
                "No container runtime found. Running in offline mode: "
                "all operations return placeholder results.",
                title="Offline",
                style="yellow",
            ))
        else:
            self.console.print(f"[dim]Runtime: {engine}[/dim]")

    def display_containers(self, containers: Iterable[ContainerRecord]):
        """Display container status."""
        table = Table(title="Container Status")
        table.add_column("Container", style="cyan")
        table.add_column("Image", style="blue")
        table.add_column("Status")
        table.add_column("Health", style="yellow")
        table.add_column("Ports", style="magenta")
        table.add_column("Created")

        for container in containers:
            style = STATUS_STYLES.get(container.status.value, 'white')
            health = HEALTH_STYLES.get(container.health.value, '') if container.health else '[dim]n/a'
            table.add_row(
                container.name,
                container.image,
                f"[{style}]{container.status.value}",
                health,
                ", ".join(container.ports) or "-",
                container.created_at.strftime('%Y-%m-%d %H:%M') if container.created_at else "-",
            )

        self.console.print(table)

    def display_start_order(self, order: List[str], dependencies: Dict[str, List[str]], missing: Optional[Dict[str, List[str]]] = None):
        """Display the computed start order with each service's dependencies."""
        table = Table(title="Start Order")
        table.add_column("#", style="dim", justify="right")
        table.add_column("Service", style="cyan")
        table.add_column("Depends on", style="magenta")

        for position, name in enumerate(order, start=1):
            deps = ", ".join(dependencies.get(name, [])) or "none"
            if missing and missing.get(name):
                deps += f" [red](undefined: {', '.join(missing[name])})"
            table.add_row(str(position), name, deps)

        self.console.print(table)

    def display_start_report(self, report):
        """Display the per-service outcome of a dependency-ordered start."""
        table = Table(title=f"Start {report.root}")
        table.add_column("Service", style="cyan")
        table.add_column("Result")
        table.add_column("Time", justify="right")
        table.add_column("Message")

        for name in report.order:
            result = report.results.get(name)
            if result is None:
                continue
            table.add_row(
                name,
                NODE_STYLES.get(result.status, result.status),
                f"{result.duration:.1f}s" if result.duration else "-",
                result.message,
            )

        self.console.print(table)
        if report.success:
            self.print_success(f"Started {report.started_count} service(s)")
        else:
            self.console.print(f"[red]Aborted at {report.failed_node}[/red]")

    def display_action_result(self, result: ActionResult):
        if result.vetoed:
            self.print_warning(f"{result.action.value} on {result.container} was vetoed")
            return
        for warning in result.warnings:
            self.print_warning(warning)
        previous = result.previous_status.value if result.previous_status else "-"
        current = result.current_status.value if result.current_status else "-"
        self.console.print(
            f"[green]✓[/green] {result.action.value} {result.container}: "
            f"{previous} → {current} ({result.duration:.2f}s)"
        )
        if isinstance(result.output, str) and result.output.strip():
            self.console.print(result.output.rstrip(), markup=False, highlight=False)

    def display_health(self, rows: List[Tuple[str, ServiceHealth]]):
        """Display health status."""
        table = Table(title="Service Health")
        table.add_column("Service", style="cyan")
        table.add_column("Status")
        table.add_column("Message")

        styles = {'healthy': 'green', 'unhealthy': 'red', 'not_found': 'yellow', 'error': 'red'}
        for name, health in rows:
            style = styles.get(health.status.value, 'white')
            table.add_row(name, f"[{style}]{health.status.value}", health.message)

        self.console.print(table)

    def display_stats(self, metrics: Iterable[ContainerMetrics]):
        """Display resource usage."""
        table = Table(title="Resource Usage Statistics")
        table.add_column("Container", style="cyan")
        table.add_column("CPU %", style="green", justify="right")
        table.add_column("Memory Usage", style="blue")
        table.add_column("Mem %", justify="right")
        table.add_column("Network I/O", style="yellow")

        for m in metrics:
            table.add_row(
                m.name,
                f"{m.cpu:.2f}",
                f"{format_bytes(m.memory_used)} / {format_bytes(m.memory_limit)}",
                f"{m.memory_percentage:.2f}",
                f"↓{format_bytes(m.network_rx)} ↑{format_bytes(m.network_tx)}",
            )

        self.console.print(table)

    def print_log_chunk(self, chunk: bytes):
        self.console.print(chunk.decode(errors='replace'), end='', markup=False, highlight=False)

    def print_event(self, event: Event):
        """Event hub subscriber printing one line per event."""
        data = dict(event.data)
        if event.type == 'container.error':
            self.console.print(f"[red]✗ {data.get('action')} {data.get('container')} failed: {data.get('error')}")
        elif event.type == 'container.dependents_warning':
            self.print_warning(
                f"{', '.join(data.get('dependents', []))} depend on {data.get('container')}"
            )
        elif event.type == 'dependency.node_started':
            self.console.print(
                f"[green]✓[/green] [{data.get('position')}/{data.get('total')}] "
                f"{data.get('service')} started"
            )
        elif event.type == 'dependency.chain_failed':
            self.console.print(f"[red]✗ Startup of {data.get('root')} stopped at {data.get('service')}")
        elif event.type == 'container.status':
            self.console.print(
                f"[dim]{data.get('container')}: {data.get('previous')} → {data.get('current')}"
            )
