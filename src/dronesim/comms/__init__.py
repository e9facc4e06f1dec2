"""Internal messaging for the simulator."""
from .event_bus import EventBus

__all__ = ["EventBus"]
