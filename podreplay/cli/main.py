"""CLI entry point.

Provides the main CLI application with commands for:
- replay: Replay a Kubernetes pod in a local sandbox
- stop: Stop a running replay
- sweep: Remove leftovers of crashed or interrupted replays
- scan: Scan an image and print its security report
- check: Check runtime, scanner and isolation support
"""

from typing import Annotated

import typer

from podreplay.cli.commands.replay import check, replay, scan, stop, sweep
from podreplay.logging_config import configure_logging

app = typer.Typer(
    name="podreplay",
    help="Replay Kubernetes pods locally in an isolated sandbox",
    add_completion=False,
    no_args_is_help=True,
)


@app.callback()
def main(
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", "-l", help="Log level (DEBUG, INFO, WARNING, ERROR)"),
    ] = None,
) -> None:
    """podreplay: sandboxed pod replay for local debugging."""
    configure_logging(log_level.upper() if log_level else None)  # type: ignore[arg-type]


app.command()(replay)
app.command()(stop)
app.command()(sweep)
app.command()(scan)
app.command()(check)


# Entry point for: python -m podreplay.cli.main
if __name__ == "__main__":
    app()
