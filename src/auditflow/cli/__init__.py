"""auditflow command line interface."""

from auditflow.cli.main import app, main

__all__ = ["app", "main"]
