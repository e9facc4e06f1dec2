"""Unit tests for StepCoordinator — barrier ordering, termination and isolation.

The coordinator is run on the test thread (``coordinator.run()``) with real
worker and detector threads behind it.
"""
from __future__ import annotations

import time

import pytest

from dronesim.app.config import Settings
from dronesim.comms.event_bus import EventBus
from dronesim.simulation.collision import CollisionDetector
from dronesim.simulation.coordinator import CoordinatorPhase, StepCoordinator
from dronesim.simulation.plan import AgentConfig
from dronesim.simulation.state import SharedStateStore, SimulationControl, SimulationStatus
from dronesim.simulation.worker import AgentWorker


pytestmark = pytest.mark.unit


class _CrashAtStep(AgentWorker):
    """Worker whose thread dies when asked to execute a given step."""

    def __init__(self, *args, crash_step: int, **kwargs):
        super().__init__(*args, **kwargs)
        self._crash_step = crash_step

    def _execute(self, step):
        if step == self._crash_step:
            raise RuntimeError("rotor failure")
        return super()._execute(step)


def _make_run(
    plans: dict[int, tuple[tuple[int, int, int], tuple[str, ...]]],
    worker_cls: dict[int, type] | None = None,
    **settings_overrides,
):
    settings_overrides.setdefault("worker_timeout", 1.0)
    settings = Settings(**settings_overrides)
    configs = [
        AgentConfig(id=aid, initial_position=start, instructions=instrs)
        for aid, (start, instrs) in plans.items()
    ]
    store = SharedStateStore(configs)
    control = SimulationControl(settings.collision_threshold)
    bus = EventBus()
    workers = []
    for c in configs:
        factory = (worker_cls or {}).get(c.id)
        if factory is None:
            workers.append(AgentWorker(c, store, control))
        else:
            workers.append(factory(c, store, control))
    detector = CollisionDetector(store, control, bus, notifier=None)
    coordinator = StepCoordinator(workers, store, control, detector, settings, event_bus=bus)
    return coordinator, workers, detector, store, control, bus


def _run(coordinator, workers, detector):
    detector.start()
    for w in workers:
        w.start()
    try:
        coordinator.run()
    finally:
        detector.stop()


class TestStepLoop:

    def test_runs_until_all_finished(self):
        coord, workers, det, store, control, _ = _make_run({
            1: ((0, 0, 0), ("UP", "UP")),
            2: ((5, 5, 5), ("DOWN", "DOWN", "DOWN")),
        })
        _run(coord, workers, det)
        assert control.steps_executed == 3
        assert store.slot(1).position == (0, 0, 2)
        assert store.slot(2).position == (5, 5, 2)
        assert coord.phase is CoordinatorPhase.DONE
        assert not control.running

    def test_finished_drones_are_not_released_again(self):
        coord, workers, det, _, _, _ = _make_run({
            1: ((0, 0, 0), ("UP",)),
            2: ((5, 5, 5), ("DOWN", "DOWN", "DOWN", "DOWN")),
        })
        _run(coord, workers, det)
        by_id = {w.agent_id: w for w in workers}
        assert by_id[1].steps_completed == 1
        assert by_id[2].steps_completed == 4

    def test_phase_order_per_step(self):
        coord, workers, det, _, _, _ = _make_run({1: ((0, 0, 0), ("UP", "UP"))})
        _run(coord, workers, det)
        log = coord.phase_log
        assert log == [
            (1, CoordinatorPhase.RELEASING),
            (1, CoordinatorPhase.AWAITING_WORKERS),
            (1, CoordinatorPhase.AWAITING_COLLISION_CHECK),
            (2, CoordinatorPhase.RELEASING),
            (2, CoordinatorPhase.AWAITING_WORKERS),
            (2, CoordinatorPhase.AWAITING_COLLISION_CHECK),
            (3, CoordinatorPhase.DONE),
        ]

    def test_detector_sees_every_step_once(self):
        coord, workers, det, _, _, _ = _make_run({1: ((0, 0, 0), ("UP", "UP", "UP"))})
        _run(coord, workers, det)
        assert det.last_checked_step == 3

    def test_step_events_published(self):
        coord, workers, det, _, _, bus = _make_run({1: ((0, 0, 0), ("RIGHT", "UP"))})
        q = bus.subscribe("step_completed", maxsize=0)
        _run(coord, workers, det)
        msgs = [q.get_nowait()["data"] for _ in range(q.qsize())]
        assert [m["step"] for m in msgs] == [1, 2]
        assert msgs[0]["agents"][0]["instruction"] == "RIGHT"
        assert msgs[1]["agents"][0]["finished"] is True

    def test_listener_gets_consistent_snapshot(self):
        seen: list[tuple[int, tuple]] = []
        coord, workers, det, _, _, _ = _make_run({
            1: ((0, 0, 0), ("RIGHT", "RIGHT")),
            2: ((0, 5, 0), ("FORWARD", "FORWARD")),
        })
        coord.add_listener(lambda step, snap: seen.append((step, tuple(s.position for s in snap))))
        _run(coord, workers, det)
        assert seen == [
            (1, ((1, 0, 0), (0, 6, 0))),
            (2, ((2, 0, 0), (0, 7, 0))),
        ]

    def test_no_drones(self):
        coord, workers, det, _, control, _ = _make_run({})
        _run(coord, workers, det)
        assert control.steps_executed == 0
        assert control.final_status() is SimulationStatus.SUCCESS

    def test_parked_drone_is_scanned(self):
        coord, workers, det, _, control, _ = _make_run({
            1: ((0, 0, 0), ("UP",)),
            2: ((0, 0, 0), ("SHAKE", "UP")),
        })
        _run(coord, workers, det)
        assert control.collision_count == 1
        assert [(e.step, e.agent_a, e.agent_b) for e in det.events] == [(2, 1, 2)]


class TestTermination:

    def test_step_bound_marks_incomplete(self):
        coord, workers, det, store, control, _ = _make_run(
            {1: ((0, 0, 0), ("UP",) * 10)}, max_steps=4,
        )
        _run(coord, workers, det)
        assert control.steps_executed == 4
        assert store.slot(1).position == (0, 0, 4)
        assert control.final_status() is SimulationStatus.FAILURE_INCOMPLETE
        assert "step bound" in control.incomplete_reasons[0]
        assert not any(w.is_alive() for w in workers)

    def test_finishing_exactly_at_bound_is_success(self):
        coord, workers, det, _, control, _ = _make_run(
            {1: ((0, 0, 0), ("UP",) * 4)}, max_steps=4,
        )
        _run(coord, workers, det)
        assert control.final_status() is SimulationStatus.SUCCESS

    def test_threshold_stops_release(self):
        coord, workers, det, _, control, _ = _make_run(
            {
                1: ((-1, 0, 0), ("RIGHT",) + ("SHAKE",) * 5),
                2: ((1, 0, 0), ("LEFT",) + ("SHAKE",) * 5),
            },
            collision_threshold=2,
        )
        _run(coord, workers, det)
        assert control.steps_executed == 2
        assert control.collision_count == 2
        assert control.final_status() is SimulationStatus.FAILURE_THRESHOLD
        assert all(w.steps_completed == 2 for w in workers)
        assert not any(w.is_alive() for w in workers)


class TestWorkerIsolation:

    def test_crashed_worker_isolated_others_continue(self):
        coord, workers, det, store, control, bus = _make_run(
            {
                1: ((0, 0, 0), ("UP", "UP", "UP")),
                2: ((9, 9, 9), ("DOWN", "DOWN", "DOWN")),
            },
            worker_cls={1: lambda c, s, ctl: _CrashAtStep(c, s, ctl, crash_step=2)},
        )
        failures = bus.subscribe("worker_failed", maxsize=0)
        _run(coord, workers, det)

        assert coord.failed_agents == [1]
        assert not store.is_active(1)
        assert store.slot(1).position == (0, 0, 1)
        assert store.slot(2).position == (9, 9, 6)
        assert control.steps_executed == 3
        assert control.final_status() is SimulationStatus.FAILURE_INCOMPLETE
        msg = failures.get_nowait()["data"]
        assert msg["agent_id"] == 1 and msg["step"] == 2

    def test_unresponsive_worker_times_out(self):
        class _Stuck(AgentWorker):
            def _execute(self, step):
                time.sleep(0.6)
                return False

        coord, workers, det, _, control, _ = _make_run(
            {1: ((0, 0, 0), ("UP",)), 2: ((3, 3, 3), ("UP", "UP"))},
            worker_cls={1: _Stuck},
            worker_timeout=0.2,
        )
        _run(coord, workers, det)
        assert coord.failed_agents == [1]
        assert control.final_status() is SimulationStatus.FAILURE_INCOMPLETE

    def test_isolated_drone_not_scanned(self):
        coord, workers, det, store, control, _ = _make_run(
            {
                1: ((0, 0, 0), ("UP", "UP", "UP")),
                2: ((0, 0, 3), ("DOWN", "DOWN", "SHAKE")),
            },
            worker_cls={1: lambda c, s, ctl: _CrashAtStep(c, s, ctl, crash_step=2)},
        )
        _run(coord, workers, det)
        assert store.slot(1).position == store.slot(2).position == (0, 0, 1)
        assert coord.failed_agents == [1]
        assert control.collision_count == 0
