"""Command-line interface for contented."""

from contented.cli.app import app

__all__ = ["app"]
