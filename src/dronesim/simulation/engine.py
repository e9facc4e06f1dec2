"""SimulationEngine — wires the lock-step simulation together and runs it.

Architecture
------------
The engine owns every component of a run and the N+3 threads behind them:

  drone-<id> (one per drone)  AgentWorker: one instruction per go signal
  sim-coordinator             StepCoordinator: clock and per-step barrier
  sim-collision               CollisionDetector: pairwise scan per step
  sim-reporter                EventReporter: bus -> report file (optional)

Data flow:
  Coordinator --(go)--> Workers --(publish)--> SharedStateStore
  Coordinator --(step final)--> Detector --(collision_detected)--> EventBus
  EventBus --(FIFO queue)--> EventReporter --> ReportWriter

``run()`` blocks until the coordinator reaches DONE, then stops the
detector, drains the reporter, writes the summary and returns a
SimulationResult.  Every exit path, including worker failures, produces a
final status and a complete, flushed report.

Bounds (drone count, plan length, step count, collision threshold) come
from Settings.  Configs that exceed them are rejected with LoadError before
any thread starts.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable

from loguru import logger

from dronesim.comms.event_bus import EventBus

from .collision import CollisionDetector, CollisionEvent
from .coordinator import StepCoordinator, StepListener
from .errors import LoadError
from .plan import AgentConfig, Position
from .reporter import EventReporter, ReportWriter
from .state import AgentSnapshot, SharedStateStore, SimulationControl, SimulationStatus
from .worker import AgentWorker

if TYPE_CHECKING:
    from dronesim.app.config import Settings


@dataclass
class SimulationResult:
    """Outcome of one run."""

    status: SimulationStatus
    steps_executed: int
    collision_count: int
    events: list[CollisionEvent] = field(default_factory=list)
    final_snapshot: tuple[AgentSnapshot, ...] = ()
    failed_agents: list[int] = field(default_factory=list)
    stop_reason: str | None = None

    @property
    def exit_code(self) -> int:
        return self.status.exit_code


def validate_configs(configs: list[AgentConfig], settings: Settings) -> None:
    """Reject flight plans that break the configured bounds."""
    if len(configs) > settings.max_agents:
        raise LoadError(f"{len(configs)} drones exceeds max_agents={settings.max_agents}")
    seen: set[int] = set()
    for c in configs:
        if c.id in seen:
            raise LoadError(f"duplicate drone id {c.id}")
        seen.add(c.id)
        if c.instruction_count > settings.max_instructions:
            raise LoadError(
                f"drone {c.id} has {c.instruction_count} instructions "
                f"(max {settings.max_instructions})"
            )


class SimulationEngine:
    """Runs a fixed set of drone flight plans to completion in lock-step."""

    def __init__(
        self,
        configs: Iterable[AgentConfig],
        event_bus: EventBus | None = None,
        settings: Settings | None = None,
        report: ReportWriter | None = None,
        on_step: StepListener | None = None,
    ) -> None:
        if settings is None:
            from dronesim.app.config import settings
        self._settings = settings
        self._configs = sorted(configs, key=lambda c: c.id)
        validate_configs(self._configs, settings)

        self._event_bus = event_bus if event_bus is not None else EventBus()
        self._report = report
        self.store = SharedStateStore(self._configs)
        self.control = SimulationControl(settings.collision_threshold)
        self.workers: dict[int, AgentWorker] = {
            c.id: AgentWorker(c, self.store, self.control) for c in self._configs
        }
        self.detector = CollisionDetector(
            self.store, self.control, self._event_bus, notifier=self._notify_agent
        )
        self.reporter: EventReporter | None = None
        if report is not None:
            self.reporter = EventReporter(self._event_bus, report)

        listeners: list[StepListener] = [self._record_history]
        if on_step is not None:
            listeners.append(on_step)
        self.coordinator = StepCoordinator(
            self.workers.values(),
            self.store,
            self.control,
            self.detector,
            settings,
            event_bus=self._event_bus,
            listeners=listeners,
        )

        # step -> {drone id -> position}
        self._history: dict[int, dict[int, Position]] = {}
        self._ran = False

    @property
    def event_bus(self) -> EventBus:
        """Public read access to the engine's EventBus."""
        return self._event_bus

    @property
    def configs(self) -> list[AgentConfig]:
        return list(self._configs)

    @property
    def history(self) -> dict[int, dict[int, Position]]:
        return {step: dict(positions) for step, positions in self._history.items()}

    def snapshot(self) -> tuple[AgentSnapshot, ...]:
        return self.store.snapshot()

    # -- Run -----------------------------------------------------------------

    def run(self) -> SimulationResult:
        """Run the simulation to completion and return its result."""
        if self._ran:
            raise RuntimeError("SimulationEngine.run() may only be called once")
        self._ran = True

        if self._report is not None:
            self._report.write_header()
            self._report.write_initial_states(self._configs)

        logger.info(
            f"Simulation starting: {len(self._configs)} drone(s), "
            f"max {self._settings.max_steps} steps, "
            f"collision threshold {self._settings.collision_threshold}"
        )

        if self.reporter is not None:
            self.reporter.start()
        self.detector.start()
        for worker in self.workers.values():
            worker.start()
        self.coordinator.start()

        try:
            self.coordinator.join()
        finally:
            self.detector.stop()
            if self.reporter is not None:
                self.reporter.stop()

        result = SimulationResult(
            status=self.control.final_status(),
            steps_executed=self.control.steps_executed,
            collision_count=self.control.collision_count,
            events=self.detector.events,
            final_snapshot=self.store.snapshot(),
            failed_agents=self.coordinator.failed_agents,
            stop_reason=self.control.stop_reason,
        )

        if self._report is not None:
            self._report.write_summary(
                len(self._configs), result.steps_executed, result.events, result.status
            )
        self._event_bus.publish("simulation_finished", {
            "status": result.status.name,
            "steps": result.steps_executed,
            "collisions": result.collision_count,
        })

        log = logger.warning if result.status.is_failure else logger.info
        log(
            f"Simulation ended: {result.status.name} after {result.steps_executed} "
            f"step(s), {result.collision_count} collision(s)"
        )
        return result

    # -- Internals -----------------------------------------------------------

    def _notify_agent(self, agent_id: int, event: dict) -> bool:
        worker = self.workers.get(agent_id)
        if worker is None:
            return False
        return worker.notify(event)

    def _record_history(self, step: int, snapshot: tuple[AgentSnapshot, ...]) -> None:
        self._history[step] = {s.agent_id: s.position for s in snapshot}


def run_simulation(
    configs: Iterable[AgentConfig],
    settings: Settings | None = None,
    report: ReportWriter | None = None,
    on_step: StepListener | None = None,
) -> SimulationResult:
    """Convenience wrapper: build an engine and run it."""
    engine = SimulationEngine(configs, settings=settings, report=report, on_step=on_step)
    return engine.run()
