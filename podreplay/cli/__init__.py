"""Command-line interface for podreplay."""

from podreplay.cli.main import app

__all__ = ["app"]
