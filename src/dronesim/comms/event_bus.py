"""EventBus — thread-safe pub/sub for internal event passing.

This is the messaging primitive that decouples the simulation clock from
everything that consumes its output.  The StepCoordinator publishes
``step_completed``, the CollisionDetector publishes ``collision_detected``,
and the engine publishes ``simulation_finished``.  The EventReporter and
any display or test harness subscribe.

Each subscriber gets its own Queue.  Bounded subscribers drop their oldest
message on overflow so a slow observer never blocks a publisher.  Subscribers
that must not lose anything (the report writer) pass ``maxsize=0`` for an
unbounded queue.
"""

from __future__ import annotations

import queue
import threading


class EventBus:
    """Simple thread-safe pub/sub for pushing events to subscribers."""

    DEFAULT_MAXSIZE = 1000

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[tuple[queue.Queue, frozenset[str] | None]] = []

    def subscribe(
        self,
        _filter: str | list[str] | None = None,
        maxsize: int | None = None,
    ) -> queue.Queue:
        """Subscribe to events. Returns a Queue that receives matching events.

        ``_filter`` restricts delivery to one event type or a list of types;
        ``None`` delivers everything.  ``maxsize=0`` makes the queue unbounded.
        """
        if maxsize is None:
            maxsize = self.DEFAULT_MAXSIZE
        if _filter is None:
            types = None
        elif isinstance(_filter, str):
            types = frozenset([_filter])
        else:
            types = frozenset(_filter)
        q: queue.Queue = queue.Queue(maxsize=maxsize)
        with self._lock:
            self._subscribers.append((q, types))
        return q

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            self._subscribers = [s for s in self._subscribers if s[0] is not q]

    def publish(self, event_type: str, data: dict | None = None) -> None:
        msg = {"type": event_type}
        if data is not None:
            msg["data"] = data
        with self._lock:
            for q, types in self._subscribers:
                if types is not None and event_type not in types:
                    continue
                try:
                    q.put_nowait(msg)
                except queue.Full:
                    # Drop oldest message to make room so the newest event
                    # always lands.
                    try:
                        q.get_nowait()
                    except queue.Empty:
                        pass
                    try:
                        q.put_nowait(msg)
                    except queue.Full:
                        pass
