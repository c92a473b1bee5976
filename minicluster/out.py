"""User-facing progress messages."""

import logging

from rich.console import Console
from rich.markup import escape

from minicluster.logging_config import get_logger

logger = get_logger(__name__)

console = Console(stderr=True)


def _emit(prefix: str, template: str, values: dict, level: int | None = None) -> None:
    try:
        text = template.format(**values) if values else template
        if level is not None:
            logger.log(level, text)
        console.print(f"{prefix} {escape(text)}")
    except Exception as e:
        logger.warning(f"Unable to print message {template!r}: {e}")


def step(template: str, **values) -> None:
    """Print a progress step, e.g. ``step("Preparing Kubernetes {version}", version=v)``."""
    _emit("[cyan]>[/cyan]", template, values)


def success(template: str, **values) -> None:
    _emit("[green]✓[/green]", template, values)


def warning(template: str, **values) -> None:
    """Print a warning and record it in the log."""
    _emit("[yellow]![/yellow]", template, values, level=logging.WARNING)


def failure(template: str, **values) -> None:
    _emit("[red]✗[/red]", template, values, level=logging.ERROR)
