"""Simulation report — an append-only text file fed from the EventBus.

ReportWriter owns the file.  Every write is flushed immediately, so the
report survives even if the process dies right after a collision.

EventReporter is the single consumer thread between the bus and the
writer.  It subscribes with an unbounded queue, so the detector and
coordinator never wait on report I/O, and writes events in arrival (FIFO)
order.  ``stop()`` enqueues a sentinel behind everything already published
and waits for the thread to drain up to it.
"""

from __future__ import annotations

import queue
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Iterable, TextIO

from loguru import logger

if TYPE_CHECKING:
    from dronesim.comms.event_bus import EventBus

    from .collision import CollisionEvent
    from .plan import AgentConfig
    from .state import SimulationStatus

_STOP = "_reporter_stop"


def _fmt_pos(position) -> str:
    return f"({position[0]}, {position[1]}, {position[2]})"


def _fmt_time(ts: float) -> str:
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


class ReportWriter:
    """Writes the human-readable simulation report, flushing on every write."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()
        self._file: TextIO | None = open(self.path, "w", encoding="utf-8")

    def __enter__(self) -> ReportWriter:
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def closed(self) -> bool:
        return self._file is None

    def write(self, text: str) -> None:
        with self._lock:
            if self._file is None:
                return
            self._file.write(text)
            self._file.flush()

    # -- Sections -----------------------------------------------------------

    def write_header(self) -> None:
        now = datetime.now().strftime("%a %b %d %H:%M:%S %Y")
        self.write(
            "==== Simulation Report ====\n"
            f"Report generated on: {now}\n"
            "===========================\n\n"
        )

    def write_initial_states(self, configs: Iterable[AgentConfig]) -> None:
        configs = list(configs)
        lines = [f"Initial Drone States (Loaded {len(configs)} drones):\n"]
        for c in configs:
            lines.append(
                f"  Drone ID {c.id}: Start Pos {_fmt_pos(c.initial_position)}, "
                f"Instructions: {c.instruction_count}\n"
            )
        lines.append("---------------------------------------\n\n")
        self.write("".join(lines))

    def write_step(self, step: int, agents: Iterable[dict]) -> None:
        lines = [f"--- Time Step {step} ---\n"]
        for a in agents:
            if a.get("finished"):
                lines.append(
                    f"  Drone ID {a['id']}: Pos {_fmt_pos(a['position'])} - FINISHED flight plan.\n"
                )
            else:
                lines.append(
                    f"  Drone ID {a['id']}: Pos {_fmt_pos(a['position'])}, "
                    f"Executed Instr {a['last_executed_index']} ({a.get('instruction', 'UNKNOWN')})\n"
                )
        self.write("".join(lines))

    def write_collision(self, event: dict) -> None:
        self.write(
            f"  COLLISION! Drones {event['agent_a']} and {event['agent_b']} at "
            f"{_fmt_pos(event['position'])}. Timestamp: {_fmt_time(event['timestamp'])}\n"
        )

    def write_error(self, message: str) -> None:
        self.write(f"ERROR: {message}\n")

    def write_summary(
        self,
        agent_count: int,
        steps_executed: int,
        events: list[CollisionEvent],
        status: SimulationStatus,
    ) -> None:
        lines = [
            "\n==== Simulation Summary ====\n",
            f"Total Drones Simulated: {agent_count}\n",
            f"Total Time Steps Executed: {steps_executed}\n",
            f"Total Collisions Detected: {len(events)}\n",
            f"\nCollision Event Log ({len(events)} entries):\n",
        ]
        if not events:
            lines.append("  No collisions occurred during the simulation.\n")
        for n, e in enumerate(events, start=1):
            lines.append(
                f"  Event {n}: Time Step {e.step}, Drones {e.agent_a} & {e.agent_b} "
                f"at {_fmt_pos(e.position)}, Logged at: {_fmt_time(e.timestamp)}\n"
            )
        lines.append(f"\nOverall Simulation Status: {status.description}\n")
        lines.append("==========================\n")
        self.write("".join(lines))

    def close(self) -> None:
        with self._lock:
            if self._file is None:
                return
            self._file.write("\n==== End of Report ====\n")
            self._file.close()
            self._file = None


class EventReporter:
    """Drains simulation events from the EventBus into a ReportWriter."""

    EVENT_TYPES = ["step_completed", "collision_detected", "worker_failed"]

    def __init__(self, event_bus: EventBus, writer: ReportWriter) -> None:
        self._event_bus = event_bus
        self._writer = writer
        self._queue: queue.Queue = event_bus.subscribe(self.EVENT_TYPES, maxsize=0)
        self._thread: threading.Thread | None = None
        self._processed = 0
        self._collisions_written = 0

    @property
    def processed(self) -> int:
        return self._processed

    @property
    def collisions_written(self) -> int:
        return self._collisions_written

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run, name="sim-reporter", daemon=True
        )
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Write everything queued so far, then stop the thread."""
        self._queue.put({"type": _STOP})
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Event reporter did not drain before timeout")
            self._thread = None
        self._event_bus.unsubscribe(self._queue)

    def _run(self) -> None:
        started = time.monotonic()
        while True:
            msg = self._queue.get()
            if msg["type"] == _STOP:
                break
            try:
                self._handle(msg)
            except OSError as e:
                logger.error(f"Report write failed: {e}")
            self._processed += 1
        logger.debug(
            f"Event reporter drained {self._processed} event(s) in "
            f"{time.monotonic() - started:.2f}s"
        )

    def _handle(self, msg: dict) -> None:
        data = msg.get("data", {})
        if msg["type"] == "step_completed":
            self._writer.write_step(data["step"], data["agents"])
        elif msg["type"] == "collision_detected":
            self._writer.write_collision(data)
            self._collisions_written += 1
        elif msg["type"] == "worker_failed":
            self._writer.write_error(data["message"])
