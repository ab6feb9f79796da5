"""Command-line interface for KubeVirt ISO builds."""

import logging
import signal
import threading
from pathlib import Path
from types import FrameType

import structlog
import typer
from rich.console import Console
from rich.table import Table

from .builder import Builder
from .config import Settings, load_settings
from .errors import BuildFailedError, ConfigurationError

app = typer.Typer(
    name="kubevirt-iso-builder",
    help="Build reusable KubeVirt boot images from installation ISOs",
    add_completion=False,
)
console = Console()

logger = structlog.get_logger()


def configure_logging(debug: bool = False, json_logs: bool = False) -> None:
    """Configure structured logging."""
    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(logging.DEBUG if debug else logging.INFO),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def install_signal_handlers(cancel: threading.Event) -> None:
    """Set the cancel event on SIGINT/SIGTERM so in-flight waits stop and cleanup runs."""

    def _handler(signum: int, frame: FrameType | None) -> None:
        logger.warning("Received signal, cancelling build", signal=signal.Signals(signum).name)
        cancel.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)


def _load(config_file: Path) -> tuple[Settings, list[str]]:
    settings = load_settings(config_file)
    warnings = settings.prepare()
    for warning in warnings:
        console.print(f"[yellow]warning:[/yellow] {warning}")
    return settings, warnings


def _print_failure(error: BuildFailedError) -> None:
    console.print(f"[red]Build failed:[/red] {error}")
    if error.retained_resources:
        table = Table(title="Retained resources")
        table.add_column("Resource")
        for resource in error.retained_resources:
            table.add_row(resource)
        console.print(table)


@app.command()
def build(
    config_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Build definition (YAML)"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit logs as JSON"),
) -> None:
    """Run a build and publish the resulting image."""
    configure_logging(debug, json_logs)

    try:
        settings, _ = _load(config_file)
    except ConfigurationError as e:
        for problem in e.problems:
            console.print(f"[red]error:[/red] {problem}")
        raise typer.Exit(1)

    cancel = threading.Event()
    install_signal_handlers(cancel)

    builder = Builder(settings, cancel=cancel)
    try:
        artifact = builder.run()
    except ConfigurationError as e:
        console.print(f"[red]error:[/red] {e}")
        raise typer.Exit(1)
    except BuildFailedError as e:
        _print_failure(e)
        raise typer.Exit(1)

    console.print(f"[green]Build finished:[/green] {artifact}")
    for resource in builder.retained_resources:
        console.print(f"  retained: {resource}")


@app.command()
def validate(
    config_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Build definition (YAML)"),
) -> None:
    """Check a build definition without contacting the cluster."""
    try:
        settings, _ = _load(config_file)
    except ConfigurationError as e:
        for problem in e.problems:
            console.print(f"[red]error:[/red] {problem}")
        raise typer.Exit(1)

    console.print(
        f"[green]Configuration is valid:[/green] {settings.namespace}/{settings.name} "
        f"(vm {settings.vm_name}, {settings.os_type}, communicator {settings.communicator.type})"
    )


if __name__ == "__main__":
    app()
