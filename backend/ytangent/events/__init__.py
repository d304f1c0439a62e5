"""Event sourcing: append-only event store and state projection."""

from ytangent.events.projector import StateProjector
from ytangent.events.store import EventStore, PersistenceError

__all__ = ["EventStore", "PersistenceError", "StateProjector"]
