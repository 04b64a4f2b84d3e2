"""Cargo subcommand that configures, builds and runs ArceOS kernels."""
from __future__ import annotations

from .cli import main

__all__ = ["main"]
