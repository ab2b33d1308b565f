"""Subserve CLI - Command line interface."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path

import click
import structlog
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from subserve.core.config import ServeConfig

console = Console()
logger = structlog.get_logger()

BANNER = """
 ┌─┐┬ ┬┌┐ ┌─┐┌─┐┬─┐┬  ┬┌─┐
 └─┐│ │├┴┐└─┐├┤ ├┬┘└┐┌┘├┤
 └─┘└─┘└─┘└─┘└─┘┴└─ └┘ └─┘
   Static sites per subdomain, tunneled
"""


def _configure_logging(log_level: str, verbose: bool = False) -> None:
    effective_log_level = "debug" if verbose else log_level
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, effective_log_level.upper())
        ),
    )


def _build_config(
    port: int | None,
    content_root: str | None,
    default_subdomain: str | None,
    log_level: str | None,
) -> ServeConfig:
    overrides: dict = {}
    if port is not None:
        overrides["port"] = port
    if content_root is not None:
        overrides["content_root"] = Path(content_root)
    if default_subdomain is not None:
        overrides["default_subdomain"] = default_subdomain
    if log_level is not None:
        overrides["log_level"] = log_level.lower()
    # Init kwargs outrank the environment and go through the field validators.
    return ServeConfig(**overrides)


@click.group(invoke_without_command=True)
@click.option("--port", "-p", type=int, help="Local port to listen on (default: $PORT or 4545)")
@click.option(
    "--content-root",
    "-r",
    type=click.Path(file_okay=False),
    help="Directory holding one folder per subdomain (default: ./content)",
)
@click.option("--default-subdomain", help="Folder served for bare and loopback hosts (default: www)")
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["debug", "info", "warning", "error"], case_sensitive=False),
    default=None,
    help="Log level (default: info)",
)
@click.option("--verbose", "-v", is_flag=True, help="Verbose output")
@click.pass_context
def main(
    ctx: click.Context,
    port: int | None,
    content_root: str | None,
    default_subdomain: str | None,
    log_level: str | None,
    verbose: bool,
):
    """Subserve - serve ./content/<subdomain> through a Cloudflare tunnel.

    Requires CLOUDFLARED_TOKEN. PORT selects the local port.

    Examples:

        CLOUDFLARED_TOKEN=... subserve

        subserve --port 8080 --content-root /srv/sites

    Use 'subserve COMMAND --help' for more info on specific commands.
    """
    try:
        config = _build_config(port, content_root, default_subdomain, log_level)
    except ValidationError as e:
        console.print(f"[red]Invalid configuration: {escape(str(e))}[/red]")
        sys.exit(1)
    _configure_logging(config.log_level, verbose)

    ctx.ensure_object(dict)
    ctx.obj["config"] = config

    if ctx.invoked_subcommand is None:
        _run_with_signal_handling(config)


def _run_with_signal_handling(config: ServeConfig) -> None:
    """Run the service until SIGINT/SIGTERM, exiting 0, or 1 on startup failure."""
    from subserve.lifecycle import ServiceLifecycle

    lifecycle = ServiceLifecycle(config)
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    console.print(BANNER, style="cyan")
    main_task = loop.create_task(_serve(lifecycle))
    shutdown_requested = False

    def signal_handler(sig: int, frame: object) -> None:
        nonlocal shutdown_requested
        if shutdown_requested:
            console.print("\n[red]Force shutdown![/red]")
            sys.exit(1)
        shutdown_requested = True
        console.print("\n[yellow]Shutting down gracefully...[/yellow]")
        loop.call_soon_threadsafe(main_task.cancel)

    previous_handlers = {signal.SIGINT: signal.signal(signal.SIGINT, signal_handler)}
    if hasattr(signal, "SIGTERM"):
        previous_handlers[signal.SIGTERM] = signal.signal(signal.SIGTERM, signal_handler)

    exit_code = 0
    try:
        loop.run_until_complete(main_task)
    except (asyncio.CancelledError, KeyboardInterrupt):
        pass
    except Exception as e:
        from subserve.core.exceptions import SubserveError, format_error_for_user

        exit_code = 1
        logger.error("Failed to start server", error=format_error_for_user(e))
        if isinstance(e, SubserveError):
            console.print(Panel(f"[red]{escape(e.message)}[/red]", title=f"Error: {e.code}", border_style="red"))
        else:
            console.print(
                Panel(f"[red]{escape(format_error_for_user(e))}[/red]", title="Startup Error", border_style="red")
            )
    finally:
        pending = asyncio.all_tasks(loop)
        for task in pending:
            task.cancel()
        if pending:
            loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        loop.close()
        asyncio.set_event_loop(None)
        for sig, handler in previous_handlers.items():
            with contextlib.suppress(ValueError, TypeError):
                signal.signal(sig, handler)

    if exit_code:
        sys.exit(exit_code)


async def _serve(lifecycle) -> None:
    def on_ready(connection) -> None:
        console.print(
            Panel(
                f"[green]Tunnel established![/green]\n\n"
                f"[bold]Connection:[/bold] [cyan]{connection.id}[/cyan]\n"
                f"[bold]Edge:[/bold] {connection.location} ({connection.ip})\n"
                f"[bold]Serving:[/bold] {lifecycle.config.content_root} "
                f"on localhost:{lifecycle.config.port}",
                title="Subserve",
                border_style="green",
            )
        )
        console.print("\nPress Ctrl+C to stop.\n", style="dim")

    await lifecycle.run(on_ready)


@main.command()
@click.option("--version", "release", default=None, help="cloudflared release tag (default: latest)")
@click.option("--force", is_flag=True, help="Reinstall even if the binary exists")
@click.pass_context
def install(ctx: click.Context, release: str | None, force: bool):
    """Download the cloudflared binary without starting the server."""
    from subserve.client.installer import ensure_installed
    from subserve.client.installer import install as install_binary
    from subserve.core.exceptions import SubserveError

    config: ServeConfig = ctx.obj["config"]
    binary = config.resolved_binary()
    version = release or config.cloudflared_version
    installer = install_binary if force else ensure_installed

    try:
        path = asyncio.run(installer(binary, version))
    except SubserveError as e:
        console.print(f"[red]{escape(e.message)}[/red]")
        sys.exit(1)

    console.print(f"[green]cloudflared ready:[/green] {path}")


@main.command(name="config")
@click.pass_context
def show_config(ctx: click.Context):
    """Show the effective configuration."""
    config: ServeConfig = ctx.obj["config"]
    table = Table(title="Subserve configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for key, value in config.to_display_dict().items():
        table.add_row(key, str(value))
    console.print(table)


@main.command()
def version():
    """Show version information."""
    from subserve import __version__

    console.print(BANNER, style="cyan")
    console.print(f"[bold]Version:[/bold] {__version__}")
    console.print(f"[bold]Python:[/bold] {sys.version}")


if __name__ == "__main__":
    main()
