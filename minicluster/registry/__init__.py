"""Host driver registry."""

from minicluster.registry.drivers import register_builtin
from minicluster.registry.registry import DriverDef, DriverState, Priority, Registry, State

__all__ = ["DriverDef", "DriverState", "Priority", "Registry", "State", "register_builtin"]


def default_registry() -> Registry:
    """Return a new registry holding the built-in drivers."""
    return register_builtin(Registry())
