"""AgentWorker — one thread per drone, advancing exactly one instruction per step.

Step protocol
-------------
The coordinator and a worker talk over two bounded channels:

  release  (maxsize=1)  coordinator -> worker   step number, or None to stop
  done     (maxsize=1)  worker -> coordinator   the step just completed

A worker blocks on ``release``, applies one instruction to its private
position copy, publishes the result to the SharedStateStore in one atomic
call, advances its cursor and posts the step number on ``done``.  The
coordinator only releases step t+1 after it has collected every ``done``
for step t and the collision detector has acknowledged, so two steps can
never overlap.

Instruction application is all-or-nothing: the private cursor and position
only move after the store accepted the publish.  If terminate_requested was
set first, the publish is refused and the worker exits with nothing applied.

Collision notifications arrive on a third, advisory queue.  They are drained
and logged at the next go signal; they never touch the cursor or position.
"""

from __future__ import annotations

import queue
import threading
import time

from loguru import logger

from .errors import WorkerCommunicationFailure
from .plan import AgentConfig, Position
from .state import SharedStateStore, SimulationControl


class AgentWorker:
    """Executes one drone's flight plan in lock-step with the coordinator."""

    NOTIFY_MAXSIZE = 64
    _POLL_INTERVAL = 0.05

    def __init__(
        self,
        config: AgentConfig,
        store: SharedStateStore,
        control: SimulationControl,
    ) -> None:
        self._config = config
        self._store = store
        self._control = control
        self._release: queue.Queue[int | None] = queue.Queue(maxsize=1)
        self._done: queue.Queue[int] = queue.Queue(maxsize=1)
        self._notifications: queue.Queue[dict] = queue.Queue(maxsize=self.NOTIFY_MAXSIZE)
        self._thread: threading.Thread | None = None

        # Private to the worker thread
        self._cursor = 0
        self._position: Position = config.initial_position
        self._steps_completed = 0
        self._acknowledged: list[dict] = []

    # -- Properties ----------------------------------------------------------

    @property
    def agent_id(self) -> int:
        return self._config.id

    @property
    def config(self) -> AgentConfig:
        return self._config

    @property
    def steps_completed(self) -> int:
        return self._steps_completed

    @property
    def acknowledged(self) -> list[dict]:
        """Collision notifications this drone has acknowledged."""
        return list(self._acknowledged)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -- Lifecycle -----------------------------------------------------------

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run, name=f"drone-{self.agent_id}", daemon=True
        )
        self._thread.start()

    def join(self, timeout: float | None = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout=timeout)

    # -- Coordinator side ----------------------------------------------------

    def release(self, step: int) -> None:
        """Send the go signal for *step*."""
        try:
            self._release.put_nowait(step)
        except queue.Full:
            raise WorkerCommunicationFailure(
                self.agent_id, step, "previous go signal was never consumed"
            ) from None

    def wait_done(self, step: int, timeout: float) -> None:
        """Block until this worker reports *step* complete.

        Raises WorkerCommunicationFailure on timeout, if the thread died, or
        if the worker reports a step other than the one released.
        """
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise WorkerCommunicationFailure(self.agent_id, step, "timed out")
            try:
                reported = self._done.get(timeout=min(self._POLL_INTERVAL, remaining))
                break
            except queue.Empty:
                if not self.is_alive():
                    raise WorkerCommunicationFailure(
                        self.agent_id, step, "worker exited"
                    ) from None
        if reported != step:
            raise WorkerCommunicationFailure(
                self.agent_id, step, f"reported step {reported} out of order"
            )

    def terminate(self) -> None:
        """Wake the worker so it observes terminate_requested and exits."""
        try:
            self._release.put_nowait(None)
        except queue.Full:
            # A pending go signal is already queued; the worker checks
            # terminate_requested before acting on it.
            pass

    def notify(self, event: dict) -> bool:
        """Deliver an advisory collision notification.  Returns False if dropped."""
        try:
            self._notifications.put_nowait(event)
            return True
        except queue.Full:
            return False

    # -- Worker thread -------------------------------------------------------

    def _run(self) -> None:
        logger.debug(f"Drone {self.agent_id}: worker started")
        try:
            while self._control.running:
                step = self._release.get()
                if step is None or self._store.terminate_requested(self.agent_id):
                    break
                self._acknowledge_notifications()
                if not self._execute(step):
                    break
                self._steps_completed += 1
                self._done.put(step)
                if self._cursor >= self._config.instruction_count:
                    break
        except Exception:
            logger.exception(f"Drone {self.agent_id}: worker crashed")
        finally:
            self._acknowledge_notifications()
            logger.debug(
                f"Drone {self.agent_id}: worker exiting after "
                f"{self._steps_completed} step(s)"
            )

    def _execute(self, step: int) -> bool:
        """Apply one instruction and publish it.  Returns False if refused."""
        count = self._config.instruction_count
        if self._cursor >= count:
            # Nothing left to do: report finished with the position unchanged.
            return self._store.publish(
                self.agent_id, self._position, self._cursor - 1, finished=True
            )

        instruction = self._config.instructions[self._cursor]
        new_position = instruction.apply(self._position)
        finished = self._cursor + 1 >= count
        if not self._store.publish(self.agent_id, new_position, self._cursor, finished):
            return False

        logger.debug(
            f"Drone {self.agent_id}: step {step} {instruction.value} -> {new_position}"
        )
        self._position = new_position
        self._cursor += 1
        return True

    def _acknowledge_notifications(self) -> None:
        while True:
            try:
                event = self._notifications.get_nowait()
            except queue.Empty:
                return
            self._acknowledged.append(event)
            others = [a for a in (event.get("agent_a"), event.get("agent_b")) if a != self.agent_id]
            other = others[0] if others else "?"
            logger.info(
                f"Drone {self.agent_id}: acknowledged collision with drone {other} "
                f"at step {event.get('step')}"
            )
