#!/usr/bin/env python3
"""
Cronos - Dependency-aware container lifecycle manager.
"""
import sys
import asyncio
import logging
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console

from cronos.core.context import AppContext, Settings
from cronos.core.events import CONTAINER_ERROR, DEPENDENCY_CHAIN_FAILED, DEPENDENCY_NODE_STARTED
from cronos.core.exceptions import ComposeFileNotFound, CronosError, handle_error
from cronos.core.models import ActionRequest, ContainerAction
from cronos.core.utils import setup_logging
from cronos.ui.console import ConsoleUI

VERSION = "1.0.0"
console = Console()
ui = ConsoleUI(console)
logger = logging.getLogger('cronos.cli')


def fail(ctx, error: Exception):
    """Print an error the way every command does and exit with status 1."""
    message = handle_error(error) if isinstance(error, CronosError) else str(error)
    ui.print_error(message, show_traceback=ctx.obj.get('DEBUG', False))
    sys.exit(1)


def get_context(ctx) -> AppContext:
    """Get the application context for this invocation."""
    app = ctx.obj.get('CONTEXT')
    if app is None:
        app = AppContext(ctx.obj['SETTINGS'])
        ctx.obj['CONTEXT'] = app
    return app


def run(ctx, handler):
    """Run handler(app) on an initialized context inside a fresh event loop."""
    app = get_context(ctx)

    async def main():
        status = await app.initialize()
        if app.engine.offline:
            ui.print_engine_status(status, app.engine.name)
        try:
            return await handler(app)
        finally:
            await app.close()

    try:
        return asyncio.run(main())
    except CronosError as e:
        fail(ctx, e)


def load_graph(app: AppContext):
    """Load definitions and build the dependency graph when a compose file exists."""
    try:
        app.load_definitions()
    except ComposeFileNotFound:
        logger.debug("No compose file found, dependency information unavailable")
        return None
    return app.resolver()


# CLI Commands
@click.group(invoke_without_command=True)
@click.version_option(version=VERSION)
@click.option('--debug', is_flag=True, help='Enable debug logging')
@click.option('--compose-file', '-f', type=click.Path(path_type=Path), help='Compose file to use')
@click.option('--engine', type=click.Choice(['auto', 'docker', 'podman']), help='Container runtime to use')
@click.pass_context
def cli(ctx, debug: bool, compose_file: Optional[Path], engine: Optional[str]):
    """Cronos - Dependency-aware container lifecycle manager"""
    ctx.ensure_object(dict)

    settings = ctx.obj.get('SETTINGS')
    if settings is None:
        try:
            settings = Settings.from_env()
        except CronosError as e:
            ui.print_error(handle_error(e))
            sys.exit(1)
    if compose_file:
        settings.compose_file = compose_file
    if engine:
        settings.engine = engine
    settings.debug = settings.debug or debug

    # Initialize logging with debug flag
    setup_logging(settings.debug, settings.log_dir)

    ctx.obj['SETTINGS'] = settings
    ctx.obj['DEBUG'] = settings.debug

    if settings.debug:
        logger.debug("Debug mode enabled")
        logger.debug(f"Current working directory: {Path.cwd()}")

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
@click.argument('containers', nargs=-1)
@click.pass_context
def status(ctx, containers: Tuple[str]):
    """Show status of containers"""
    async def handler(app: AppContext):
        records = await app.lifecycle.refresh()
        if containers:
            wanted = [app.lifecycle.find_record(name) for name in containers]
            records = [r for r in wanted if r is not None]
        if not records:
            console.print("[yellow]No containers found[/yellow]")
            return
        ui.display_containers(records)

    run(ctx, handler)


@cli.command()
@click.argument('services', nargs=-1)
@click.option('--with-deps', is_flag=True, help='Start dependencies first, waiting for each to become healthy')
@click.pass_context
def start(ctx, services: Tuple[str], with_deps: bool):
    """Start services"""
    async def handler(app: AppContext):
        if not with_deps:
            with ui.show_progress("Starting services..."):
                await app.engine.start_services(list(services))
            ui.display_containers(await app.lifecycle.refresh())
            return

        resolver = load_graph(app)
        if resolver is None:
            raise ComposeFileNotFound()
        roots = list(services) or resolver.graph.services
        app.events.subscribe(DEPENDENCY_NODE_STARTED, ui.print_event)
        app.events.subscribe(DEPENDENCY_CHAIN_FAILED, ui.print_event)
        app.events.subscribe(CONTAINER_ERROR, ui.print_event)

        await app.lifecycle.refresh()
        for root in roots:
            report = await resolver.start_with_dependencies(root)
            await app.events.flush()
            ui.display_start_report(report)
            if not report.success:
                raise report.error

    run(ctx, handler)


@cli.command()
@click.argument('services', nargs=-1)
@click.pass_context
def stop(ctx, services: Tuple[str]):
    """Stop services"""
    async def handler(app: AppContext):
        resolver = load_graph(app)
        if resolver is not None and services:
            await app.lifecycle.refresh()
            for name in services:
                record = app.lifecycle.find_record(name)
                if record is None:
                    continue
                running = [d for d in app.lifecycle.running_dependents(record) if d not in services]
                if running:
                    ui.print_warning(f"Running services depend on {name}: {', '.join(running)}")
        with ui.show_progress("Stopping services..."):
            await app.engine.stop_services(list(services))
        ui.print_success("Services stopped")

    run(ctx, handler)


@cli.command()
@click.argument('services', nargs=-1)
@click.pass_context
def restart(ctx, services: Tuple[str]):
    """Restart services"""
    async def handler(app: AppContext):
        with ui.show_progress("Restarting services..."):
            await app.engine.restart_services(list(services))
        ui.display_containers(await app.lifecycle.refresh())

    run(ctx, handler)


@cli.command()
@click.argument('service')
@click.option('--follow', '-f', is_flag=True, help='Follow log output')
@click.pass_context
def logs(ctx, service: str, follow: bool):
    """Show service logs"""
    async def handler(app: AppContext):
        stream = await app.engine.get_logs(service, follow)
        try:
            async for chunk in stream:
                ui.print_log_chunk(chunk)
        finally:
            await stream.close()
        for error in stream.errors:
            ui.print_warning(f"Log stream error: {error}")

    run(ctx, handler)


@cli.command()
@click.pass_context
def stats(ctx):
    """Show resource usage statistics"""
    async def handler(app: AppContext):
        snapshot = await app.metrics.collect_once()
        if not snapshot:
            console.print("[yellow]No statistics available[/yellow]")
            return
        ui.display_stats(snapshot.values())

    run(ctx, handler)


@cli.command()
@click.argument('service', required=False)
@click.pass_context
def health(ctx, service: Optional[str]):
    """Show health status"""
    async def handler(app: AppContext):
        names = [service] if service else [d.name for d in app.load_definitions()]
        rows = []
        for name in names:
            rows.append((name, await app.lifecycle.check_service_health(name)))
        ui.display_health(rows)

    run(ctx, handler)


@cli.command()
@click.argument('action', type=click.Choice([a.value for a in ContainerAction]))
@click.argument('container')
@click.option('--command', '-c', 'command', help='Command for exec')
@click.pass_context
def action(ctx, action: str, container: str, command: Optional[str]):
    """Run a lifecycle action against one container"""
    async def handler(app: AppContext):
        load_graph(app)
        await app.lifecycle.refresh()
        result = await app.lifecycle.execute_request(
            ActionRequest(container, ContainerAction(action), command)
        )
        if result.action == ContainerAction.LOGS and result.output is not None:
            stream = result.output
            try:
                async for chunk in stream:
                    ui.print_log_chunk(chunk)
            finally:
                await stream.close()
            return
        ui.display_action_result(result)

    run(ctx, handler)


@cli.command()
@click.argument('root', required=False)
@click.pass_context
def order(ctx, root: Optional[str]):
    """Show the dependency start order"""
    app = get_context(ctx)
    try:
        resolver = app.resolver(app.load_definitions())
        start_order = resolver.calculate_start_order(root)
    except CronosError as e:
        fail(ctx, e)
    ui.display_start_order(start_order, resolver.graph.dependencies, resolver.graph.missing)


if __name__ == '__main__':
    cli()
