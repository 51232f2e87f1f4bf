"""QueryTorque Plan CLI."""

from .main import cli

__all__ = ["cli"]
