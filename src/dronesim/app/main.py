"""dronesim command line — load a flight plan, run it, write the report.

Usage:
    dronesim drones_flight_plan.csv
    dronesim plan.csv --report out.txt --threshold 5 --max-steps 200 --no-display

Exit code is 0 for PASSED / COMPLETED WITH COLLISIONS and 1 for any failure,
including a flight plan that could not be loaded.
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from dronesim.app.config import Settings
from dronesim.simulation import (
    AgentConfig,
    AgentSnapshot,
    LoadError,
    ReportWriter,
    SimulationEngine,
    SimulationStatus,
    load_flight_plan,
    render_grid,
    render_summary,
)
from dronesim.simulation.coordinator import StepListener


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dronesim",
        description="Run scripted drones in lock-step on a 3D grid and report collisions.",
    )
    parser.add_argument("plan", nargs="?", default=None,
                        help="flight plan CSV (default: DRONESIM_PLAN_PATH or drones_flight_plan.csv)")
    parser.add_argument("--report", dest="report_path", default=None,
                        help="report file to write")
    parser.add_argument("--threshold", dest="collision_threshold", type=int, default=None,
                        help="collisions that end the run as a failure")
    parser.add_argument("--max-steps", dest="max_steps", type=int, default=None,
                        help="safety limit on simulation steps")
    parser.add_argument("--step-delay", dest="step_delay", type=float, default=None,
                        help="seconds to pause after each step")
    parser.add_argument("--no-display", dest="display_enabled", action="store_false", default=None,
                        help="do not print the grid after each step")
    parser.add_argument("--log-level", dest="log_level", default=None,
                        help="loguru level (DEBUG, INFO, WARNING, ...)")
    return parser


def configure_logging(level: str) -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper(),
               format="{time:HH:mm:ss} | {level: <7} | {thread.name} | {message}")


def _make_display(run_settings: Settings, configs: list[AgentConfig]) -> StepListener:
    def show(step: int, snapshot: tuple[AgentSnapshot, ...]) -> None:
        print(render_grid(snapshot, step, run_settings.grid_width, run_settings.grid_height))
        print(render_summary(snapshot, configs, step))
        print()
    return show


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    overrides = {k: v for k, v in vars(args).items() if v is not None and k != "plan"}
    if args.plan is not None:
        overrides["plan_path"] = Path(args.plan)
    try:
        run_settings = Settings(**overrides)
    except ValidationError as e:
        print(f"dronesim: invalid option: {e}", file=sys.stderr)
        return 2

    configure_logging(run_settings.log_level)

    try:
        report = ReportWriter(run_settings.report_path)
    except OSError as e:
        logger.error(f"Cannot open report file {run_settings.report_path}: {e}")
        return 1

    with report:
        try:
            configs = load_flight_plan(run_settings.plan_path, run_settings)
        except LoadError as e:
            logger.error(f"Flight plan rejected: {e}")
            report.write_header()
            report.write_error(str(e))
            report.write_summary(0, 0, [], SimulationStatus.FAILURE_INCOMPLETE)
            return 1

        on_step = _make_display(run_settings, configs) if run_settings.display_enabled else None
        engine = SimulationEngine(configs, settings=run_settings, report=report, on_step=on_step)
        result = engine.run()

    print(
        f"Simulation {result.status.description}: {result.steps_executed} step(s), "
        f"{result.collision_count} collision(s). Report: {run_settings.report_path}"
    )
    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
