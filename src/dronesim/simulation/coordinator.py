"""StepCoordinator — the global clock and per-step barrier.

Phases
------
  IDLE -> RELEASING -> AWAITING_WORKERS -> AWAITING_COLLISION_CHECK -> RELEASING ...
                                                                    \\-> DONE

RELEASING                 go signal to every active drone for step t
AWAITING_WORKERS          collect one ``done`` per released drone
AWAITING_COLLISION_CHECK  hand step t to the detector, wait for its ack
DONE                      running=False, terminate leftover drones, join them

The loop ends when the run was stopped (threshold), no drone is active, or
t would exceed ``max_steps``.  The last case leaves drones unfinished and
marks the run incomplete rather than failed-by-threshold.

A worker that misses its ``done`` is isolated: terminate requested, slot
deactivated, run marked incomplete.  The remaining drones carry on.

Wait graph is strictly layered (workers -> coordinator -> detector ->
coordinator), so there is no cycle to deadlock on.
"""

from __future__ import annotations

import threading
import time
from enum import Enum
from typing import TYPE_CHECKING, Callable, Iterable

from loguru import logger

from .errors import WorkerCommunicationFailure
from .state import AgentSnapshot, SharedStateStore, SimulationControl

if TYPE_CHECKING:
    from dronesim.app.config import Settings
    from dronesim.comms.event_bus import EventBus

    from .collision import CollisionDetector
    from .worker import AgentWorker

StepListener = Callable[[int, tuple[AgentSnapshot, ...]], None]


class CoordinatorPhase(str, Enum):
    IDLE = "idle"
    RELEASING = "releasing"
    AWAITING_WORKERS = "awaiting_workers"
    AWAITING_COLLISION_CHECK = "awaiting_collision_check"
    DONE = "done"


class StepCoordinator:
    """Drives all AgentWorkers through lock-step time steps."""

    JOIN_TIMEOUT = 2.0

    def __init__(
        self,
        workers: Iterable[AgentWorker],
        store: SharedStateStore,
        control: SimulationControl,
        detector: CollisionDetector,
        settings: Settings,
        event_bus: EventBus | None = None,
        listeners: Iterable[StepListener] = (),
    ) -> None:
        self._workers: dict[int, AgentWorker] = {w.agent_id: w for w in workers}
        self._store = store
        self._control = control
        self._detector = detector
        self._settings = settings
        self._event_bus = event_bus
        self._listeners = list(listeners)
        self._phase = CoordinatorPhase.IDLE
        self._phase_log: list[tuple[int, CoordinatorPhase]] = []
        self._failed: list[int] = []
        self._thread: threading.Thread | None = None

    # -- Properties ----------------------------------------------------------

    @property
    def phase(self) -> CoordinatorPhase:
        return self._phase

    @property
    def phase_log(self) -> list[tuple[int, CoordinatorPhase]]:
        """(step, phase) for every transition, in order."""
        return list(self._phase_log)

    @property
    def failed_agents(self) -> list[int]:
        return list(self._failed)

    def add_listener(self, listener: StepListener) -> None:
        self._listeners.append(listener)

    # -- Lifecycle -----------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self.run, name="sim-coordinator", daemon=True
        )
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    def run(self) -> None:
        """Run steps until Done.  Always finishes in the DONE phase."""
        logger.info(f"Coordinator starting with {len(self._workers)} drone(s)")
        try:
            self._loop()
        except Exception:
            logger.exception("Coordinator loop failed")
            self._control.mark_incomplete("coordinator error")
        finally:
            self._finish()

    # -- Step loop -----------------------------------------------------------

    def _set_phase(self, phase: CoordinatorPhase, step: int) -> None:
        self._phase = phase
        self._phase_log.append((step, phase))

    def _loop(self) -> None:
        max_steps = self._settings.max_steps
        while self._control.running:
            step = self._control.current_step
            active = self._store.active_ids()
            if not active:
                logger.info(f"All drones finished after step {step - 1}")
                break
            if step > max_steps:
                reason = (
                    f"step bound {max_steps} reached with {len(active)} "
                    f"drone(s) still active"
                )
                logger.warning(reason.capitalize())
                self._control.mark_incomplete(reason)
                break

            released = self._release(step, active)
            completed = self._await_workers(step, released)
            self._control.mark_step_executed(step)
            self._publish_step(step, completed)
            self._await_collision_check(step, self._collision_participants())

            if self._settings.step_delay > 0:
                time.sleep(self._settings.step_delay)
            if not self._control.running:
                break
            self._control.advance_step()

    def _release(self, step: int, active: list[int]) -> list[int]:
        self._set_phase(CoordinatorPhase.RELEASING, step)
        logger.debug(f"--- Time step {step}: releasing {len(active)} drone(s) ---")
        released: list[int] = []
        for agent_id in active:
            try:
                self._workers[agent_id].release(step)
            except WorkerCommunicationFailure as e:
                self._isolate(e)
                continue
            released.append(agent_id)
        return released

    def _await_workers(self, step: int, released: list[int]) -> list[int]:
        self._set_phase(CoordinatorPhase.AWAITING_WORKERS, step)
        completed: list[int] = []
        for agent_id in released:
            try:
                self._workers[agent_id].wait_done(step, self._settings.worker_timeout)
            except WorkerCommunicationFailure as e:
                self._isolate(e)
                continue
            completed.append(agent_id)
        return completed

    def _collision_participants(self) -> list[int]:
        """Every drone still in the airspace, finished or not.  Isolated drones are excluded."""
        return [aid for aid in self._store.ids if aid not in self._failed]

    def _await_collision_check(self, step: int, participants: list[int]) -> None:
        self._set_phase(CoordinatorPhase.AWAITING_COLLISION_CHECK, step)
        self._detector.submit(step, participants)
        if not self._detector.wait_ack(step, self._settings.detector_timeout):
            reason = f"collision detector did not acknowledge step {step}"
            logger.error(reason)
            self._control.mark_incomplete(reason)
            self._control.stop(reason)

    def _publish_step(self, step: int, completed: list[int]) -> None:
        snapshot = self._store.snapshot()
        if self._event_bus is not None:
            by_id = {s.agent_id: s for s in snapshot}
            agents = []
            for agent_id in completed:
                entry = by_id[agent_id].to_dict()
                index = entry["last_executed_index"]
                instructions = self._workers[agent_id].config.instructions
                if 0 <= index < len(instructions):
                    entry["instruction"] = instructions[index].value
                agents.append(entry)
            self._event_bus.publish("step_completed", {"step": step, "agents": agents})
        for listener in self._listeners:
            listener(step, snapshot)

    def _isolate(self, failure: WorkerCommunicationFailure) -> None:
        logger.error(str(failure))
        self._store.deactivate(failure.agent_id)
        self._workers[failure.agent_id].terminate()
        self._failed.append(failure.agent_id)
        self._control.mark_incomplete(str(failure))
        if self._event_bus is not None:
            self._event_bus.publish("worker_failed", {
                "agent_id": failure.agent_id,
                "step": failure.step,
                "message": str(failure),
            })

    # -- Shutdown ------------------------------------------------------------

    def _finish(self) -> None:
        self._set_phase(CoordinatorPhase.DONE, self._control.current_step)
        self._control.stop(self._control.stop_reason or "simulation complete")
        for agent_id, worker in self._workers.items():
            if worker.is_alive():
                self._store.request_terminate(agent_id)
                worker.terminate()
        for worker in self._workers.values():
            worker.join(timeout=self.JOIN_TIMEOUT)
            if worker.is_alive():
                logger.warning(f"Drone {worker.agent_id}: worker did not exit")
        logger.info(
            f"Coordinator done after {self._control.steps_executed} step(s), "
            f"{self._control.collision_count} collision(s)"
        )
