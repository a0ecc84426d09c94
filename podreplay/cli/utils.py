"""Shared CLI helpers."""

from rich.console import Console
from rich.markup import escape

console = Console()


def print_error_chain(error: BaseException) -> None:
    """Print an error and each of its causes on its own line."""
    console.print(f"[red]Error:[/red] {escape(str(getattr(error, 'message', error)))}")
    cause = error.__cause__
    while cause is not None:
        console.print(f"[red]  caused by:[/red] {escape(str(getattr(cause, 'message', cause)))}")
        cause = cause.__cause__
