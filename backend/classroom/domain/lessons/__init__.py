"""Live lesson room exports."""

from .store import RoomRegistry, RoomState, registry

__all__ = ["RoomRegistry", "RoomState", "registry"]
