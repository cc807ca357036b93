"""Entity storage for pipelines, jobs, users, events and builds.

Key exports:
    EntityStore — Protocol the trigger components depend on
    EntityRegistry — SQLite implementation
"""

from buildrelay.store.base import EntityStore
from buildrelay.store.registry import EntityRegistry

__all__ = ["EntityStore", "EntityRegistry"]
