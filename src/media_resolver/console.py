"""Shared Rich console and progress utilities for the media-resolver CLI."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

# Global console instance (initialized in CLI)
_console: Console | None = None


def get_console() -> Console:
    """Get the global Rich console instance.

    Raises:
        RuntimeError: If console not initialized (should only happen in tests)
    """
    if _console is None:
        raise RuntimeError("Console not initialized. Call set_console() first.")
    return _console


def set_console(console: Console) -> None:
    global _console
    _console = console


@contextmanager
def make_progress(transient: bool = True) -> Iterator[Progress]:
    """Create a Rich Progress context for per-title work.

    Args:
        transient: If True, progress bar disappears when complete

    Example:
        with make_progress() as progress:
            task = progress.add_task("Resolving...", total=len(titles))
            for title in titles:
                progress.update(task, advance=1)
    """
    columns = [
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
    ]
    with Progress(*columns, transient=transient, console=get_console()) as progress:
        yield progress


def print_error(message: str) -> None:
    get_console().print(f"[red]Error: {message}[/red]")


def print_warning(message: str) -> None:
    get_console().print(f"[yellow]Warning: {message}[/yellow]")


## Tests


def test_get_console_requires_set():
    global _console
    previous = _console
    _console = None
    try:
        import pytest

        with pytest.raises(RuntimeError):
            get_console()
        console = Console(file=None, force_terminal=False)
        set_console(console)
        assert get_console() is console
    finally:
        _console = previous
