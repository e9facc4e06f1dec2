"""Shared simulation state — live drone slots and the run control object.

Ownership
---------
Every AgentLiveState slot has exactly one writer for its movement fields
(position, active, finished, last_executed_index): the AgentWorker that owns
the drone.  The StepCoordinator is the only writer of terminate_requested,
and additionally clears ``active`` when it isolates an unresponsive worker.

Each slot carries its own lock.  A worker publishes position, index and
flags in one critical section, so readers (collision detector, display)
never see half of an update.  Snapshots are frozen copies taken slot by
slot under the same locks.

SimulationControl replaces scattered globals (running flag, step counter,
collision counter).  All mutation goes through its transition methods; the
``running`` flag goes false exactly once and never comes back.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

from .plan import AgentConfig, Position


class SimulationStatus(Enum):
    """Final outcome of a run.  Values match the report's status codes."""

    SUCCESS = 0
    SUCCESS_WITH_COLLISIONS = 1
    FAILURE_THRESHOLD = 2
    FAILURE_INCOMPLETE = 3

    @property
    def is_failure(self) -> bool:
        return self in (SimulationStatus.FAILURE_THRESHOLD, SimulationStatus.FAILURE_INCOMPLETE)

    @property
    def exit_code(self) -> int:
        return 1 if self.is_failure else 0

    @property
    def description(self) -> str:
        return _STATUS_TEXT[self]


_STATUS_TEXT: dict[SimulationStatus, str] = {
    SimulationStatus.SUCCESS: "PASSED (All drones completed without critical issues)",
    SimulationStatus.SUCCESS_WITH_COLLISIONS: "COMPLETED WITH COLLISIONS",
    SimulationStatus.FAILURE_THRESHOLD: "FAILED (Collision threshold exceeded)",
    SimulationStatus.FAILURE_INCOMPLETE: (
        "FAILED (Not all drones completed their flight plan normally "
        "or other critical error)"
    ),
}


@dataclass(frozen=True)
class AgentSnapshot:
    """Read-only copy of one drone's live state at a point in time."""

    agent_id: int
    position: Position
    active: bool
    finished: bool
    last_executed_index: int

    def to_dict(self) -> dict:
        return {
            "id": self.agent_id,
            "position": list(self.position),
            "active": self.active,
            "finished": self.finished,
            "last_executed_index": self.last_executed_index,
        }


@dataclass
class AgentLiveState:
    """Mutable shared state for one drone."""

    agent_id: int
    position: Position
    active: bool = True
    finished: bool = False
    last_executed_index: int = -1
    terminate_requested: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def snapshot(self) -> AgentSnapshot:
        with self._lock:
            return AgentSnapshot(
                agent_id=self.agent_id,
                position=self.position,
                active=self.active,
                finished=self.finished,
                last_executed_index=self.last_executed_index,
            )


class SharedStateStore:
    """All live drone slots, keyed by drone id and iterated in ascending id order."""

    def __init__(self, configs: Iterable[AgentConfig]) -> None:
        self._slots: dict[int, AgentLiveState] = {}
        for config in sorted(configs, key=lambda c: c.id):
            self._slots[config.id] = AgentLiveState(
                agent_id=config.id,
                position=config.initial_position,
            )

    def __len__(self) -> int:
        return len(self._slots)

    def __contains__(self, agent_id: int) -> bool:
        return agent_id in self._slots

    @property
    def ids(self) -> list[int]:
        return list(self._slots)

    def slot(self, agent_id: int) -> AgentLiveState:
        return self._slots[agent_id]

    # -- Worker writes ------------------------------------------------------

    def publish(
        self,
        agent_id: int,
        position: Position,
        executed_index: int,
        finished: bool,
    ) -> bool:
        """Atomically publish a worker's step result.

        Returns False (and changes nothing) if termination was requested
        before the publish could happen.
        """
        slot = self._slots[agent_id]
        with slot._lock:
            if slot.terminate_requested:
                return False
            slot.position = position
            slot.last_executed_index = executed_index
            if finished:
                slot.finished = True
                slot.active = False
            return True

    # -- Coordinator writes -------------------------------------------------

    def request_terminate(self, agent_id: int) -> None:
        slot = self._slots[agent_id]
        with slot._lock:
            slot.terminate_requested = True

    def deactivate(self, agent_id: int) -> None:
        """Take an unresponsive drone out of the step rotation."""
        slot = self._slots[agent_id]
        with slot._lock:
            slot.terminate_requested = True
            slot.active = False

    # -- Reads --------------------------------------------------------------

    def is_active(self, agent_id: int) -> bool:
        slot = self._slots[agent_id]
        with slot._lock:
            return slot.active

    def terminate_requested(self, agent_id: int) -> bool:
        slot = self._slots[agent_id]
        with slot._lock:
            return slot.terminate_requested

    def active_ids(self) -> list[int]:
        return [aid for aid in self._slots if self.is_active(aid)]

    def snapshot(self, agent_ids: Iterable[int] | None = None) -> tuple[AgentSnapshot, ...]:
        """Frozen copies of the requested slots (all by default), ascending id."""
        if agent_ids is None:
            ids = list(self._slots)
        else:
            ids = sorted(agent_ids)
        return tuple(self._slots[aid].snapshot() for aid in ids)


class SimulationControl:
    """Run-wide clock, collision counter and termination flags."""

    def __init__(self, collision_threshold: int) -> None:
        self._lock = threading.Lock()
        self._stopped = threading.Event()
        self.collision_threshold = collision_threshold
        self._running = True
        self._current_step = 1
        self._steps_executed = 0
        self._collision_count = 0
        self._threshold_tripped = False
        self._stop_reason: str | None = None
        self._incomplete_reasons: list[str] = []

    # -- Read access --------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._running

    @property
    def current_step(self) -> int:
        with self._lock:
            return self._current_step

    @property
    def steps_executed(self) -> int:
        with self._lock:
            return self._steps_executed

    @property
    def collision_count(self) -> int:
        with self._lock:
            return self._collision_count

    @property
    def threshold_tripped(self) -> bool:
        return self._threshold_tripped

    @property
    def stop_reason(self) -> str | None:
        return self._stop_reason

    @property
    def incomplete_reasons(self) -> list[str]:
        with self._lock:
            return list(self._incomplete_reasons)

    # -- Transitions --------------------------------------------------------

    def mark_step_executed(self, step: int) -> None:
        with self._lock:
            self._steps_executed = max(self._steps_executed, step)

    def advance_step(self) -> int:
        """Move the clock forward one step.  No-op once the run has stopped."""
        with self._lock:
            if self._running:
                self._current_step += 1
            return self._current_step

    def record_collision(self) -> int:
        """Count one collision and return the new total."""
        with self._lock:
            self._collision_count += 1
            return self._collision_count

    def threshold_reached(self) -> bool:
        with self._lock:
            return self._collision_count >= self.collision_threshold

    def trip_threshold(self, step: int) -> bool:
        """End the run because the collision threshold was reached at *step*."""
        with self._lock:
            if not self._running:
                return False
            self._threshold_tripped = True
        return self.stop(
            f"collision threshold {self.collision_threshold} reached at step {step}"
        )

    def mark_incomplete(self, reason: str) -> None:
        """Record why the run cannot be reported as a clean completion."""
        with self._lock:
            self._incomplete_reasons.append(reason)

    def stop(self, reason: str) -> bool:
        """Set running=False.  Only the first call has any effect."""
        with self._lock:
            if not self._running:
                return False
            self._running = False
            self._stop_reason = reason
        self._stopped.set()
        return True

    def wait_stopped(self, timeout: float | None = None) -> bool:
        return self._stopped.wait(timeout)

    def final_status(self) -> SimulationStatus:
        with self._lock:
            if self._threshold_tripped:
                return SimulationStatus.FAILURE_THRESHOLD
            if self._incomplete_reasons:
                return SimulationStatus.FAILURE_INCOMPLETE
            if self._collision_count > 0:
                return SimulationStatus.SUCCESS_WITH_COLLISIONS
            return SimulationStatus.SUCCESS
