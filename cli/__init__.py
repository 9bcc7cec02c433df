"""Command line dashboard for the water tank telemetry service."""

from importlib import import_module
from types import ModuleType


def __getattr__(name: str) -> ModuleType:
    if name == "app":
        return import_module("cli.app")
    raise AttributeError(name)

# ``cli.app`` must keep resolving to the module (tests patch attributes on it),
# so the Typer instance is not re-exported here.

__all__ = []
