"""CollisionDetector — pairwise position check once per completed step.

The detector runs on its own thread and is driven by the coordinator:
``submit(step, participants)`` hands over a step whose positions are final,
and ``wait_ack(step)`` blocks until the scan is done.  Between the two the
coordinator releases nothing, so the detector always reads a quiescent
SharedStateStore.

Scan order is ascending-id pairs (i < j), so events for a step are produced
and published in a deterministic order.  For each collision the detector:

  1. increments the run's collision counter (SimulationControl),
  2. appends a CollisionEvent to its log,
  3. publishes ``collision_detected`` on the EventBus for the reporter,
  4. sends a best-effort notification to both drones.

After the whole step is scanned, a counter at or above the threshold ends
the run.  That is the detector's only way to stop a simulation.

Participants are all drones, including those parked at their final cell
after finishing.  Only drones the coordinator isolated after a protocol
failure are left out.
"""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Iterable

from loguru import logger

from .plan import Position
from .state import SharedStateStore, SimulationControl

if TYPE_CHECKING:
    from dronesim.comms.event_bus import EventBus

Notifier = Callable[[int, dict], bool]


@dataclass(frozen=True)
class CollisionEvent:
    """Two drones found on the same grid cell at the end of a step."""

    step: int
    timestamp: float
    agent_a: int
    agent_b: int
    position: Position

    @property
    def timestamp_text(self) -> str:
        return datetime.fromtimestamp(self.timestamp).strftime("%Y-%m-%d %H:%M:%S")

    def to_dict(self) -> dict:
        return {
            "step": self.step,
            "timestamp": self.timestamp,
            "agent_a": self.agent_a,
            "agent_b": self.agent_b,
            "position": list(self.position),
        }

    @classmethod
    def from_dict(cls, data: dict) -> CollisionEvent:
        return cls(
            step=data["step"],
            timestamp=data["timestamp"],
            agent_a=data["agent_a"],
            agent_b=data["agent_b"],
            position=tuple(data["position"]),
        )


class CollisionDetector:
    """Finds same-cell drone pairs after each step and enforces the threshold."""

    def __init__(
        self,
        store: SharedStateStore,
        control: SimulationControl,
        event_bus: EventBus | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self._store = store
        self._control = control
        self._event_bus = event_bus
        self._notifier = notifier
        self._requests: queue.Queue[tuple[int, tuple[int, ...]] | None] = queue.Queue(maxsize=1)
        self._acks: queue.Queue[int] = queue.Queue(maxsize=1)
        self._events: list[CollisionEvent] = []
        self._events_lock = threading.Lock()
        self._last_checked_step = 0
        self._thread: threading.Thread | None = None

    @property
    def events(self) -> list[CollisionEvent]:
        with self._events_lock:
            return list(self._events)

    @property
    def last_checked_step(self) -> int:
        return self._last_checked_step

    # -- Lifecycle ----------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run, name="sim-collision", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        if self._thread is None:
            return
        self._requests.put(None)
        self._thread.join(timeout=timeout)
        self._thread = None

    # -- Coordinator side ---------------------------------------------------

    def submit(self, step: int, participants: Iterable[int]) -> None:
        """Signal that *step*'s positions are final for *participants*."""
        self._requests.put((step, tuple(participants)))

    def wait_ack(self, step: int, timeout: float) -> bool:
        """Block until the scan of *step* is acknowledged.  False on timeout."""
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            try:
                acked = self._acks.get(timeout=remaining)
            except queue.Empty:
                return False
            if acked == step:
                return True
            logger.warning(f"Collision detector acked step {acked}, expected {step}")

    # -- Detection ----------------------------------------------------------

    def scan(self, step: int, participants: Iterable[int]) -> list[CollisionEvent]:
        """Check every participant pair for *step*.  Each step is scanned once."""
        if step <= self._last_checked_step:
            logger.debug(f"Step {step} already checked, skipping")
            return []
        self._last_checked_step = step

        snapshots = self._store.snapshot(participants)
        found: list[CollisionEvent] = []
        for i, a in enumerate(snapshots):
            for b in snapshots[i + 1:]:
                if a.position != b.position:
                    continue
                total = self._control.record_collision()
                event = CollisionEvent(
                    step=step,
                    timestamp=time.time(),
                    agent_a=a.agent_id,
                    agent_b=b.agent_id,
                    position=a.position,
                )
                with self._events_lock:
                    self._events.append(event)
                found.append(event)
                logger.warning(
                    f"Collision #{total} at step {step}: drones {a.agent_id} and "
                    f"{b.agent_id} at {a.position}"
                )
                if self._event_bus is not None:
                    self._event_bus.publish("collision_detected", event.to_dict())
                self._notify(event)

        if self._control.threshold_reached() and self._control.trip_threshold(step):
            logger.warning(
                f"Collision threshold ({self._control.collision_threshold}) reached "
                f"at step {step}; terminating simulation"
            )
        return found

    def _notify(self, event: CollisionEvent) -> None:
        if self._notifier is None:
            return
        payload = event.to_dict()
        for agent_id in (event.agent_a, event.agent_b):
            try:
                delivered = self._notifier(agent_id, payload)
            except Exception as e:
                logger.debug(f"Collision notification to drone {agent_id} failed: {e}")
                continue
            if not delivered:
                logger.debug(f"Collision notification to drone {agent_id} dropped")

    def _run(self) -> None:
        logger.debug("Collision detector started")
        while True:
            request = self._requests.get()
            if request is None:
                break
            step, participants = request
            try:
                self.scan(step, participants)
            except Exception:
                logger.exception(f"Collision scan failed at step {step}")
                self._control.mark_incomplete(f"collision scan failed at step {step}")
                self._control.stop(f"collision scan failed at step {step}")
            finally:
                self._acks.put(step)
        logger.debug("Collision detector stopped")
