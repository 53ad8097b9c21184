"""Command-line interface for PeerWatch."""

from .main import cli, main

__all__ = ["cli", "main"]
