"""Simulation subsystem — lock-step drone engine, collision detection, reporting."""
from .collision import CollisionDetector, CollisionEvent
from .coordinator import CoordinatorPhase, StepCoordinator
from .display import render_grid, render_summary
from .engine import SimulationEngine, SimulationResult, run_simulation, validate_configs
from .errors import LoadError, SimulationError, UnknownInstruction, WorkerCommunicationFailure
from .loader import load_flight_plan, parse_flight_plan, parse_instruction
from .plan import AgentConfig, Instruction, Position
from .reporter import EventReporter, ReportWriter
from .state import AgentLiveState, AgentSnapshot, SharedStateStore, SimulationControl, SimulationStatus
from .worker import AgentWorker

__all__ = [
    "AgentConfig",
    "AgentLiveState",
    "AgentSnapshot",
    "AgentWorker",
    "CollisionDetector",
    "CollisionEvent",
    "CoordinatorPhase",
    "EventReporter",
    "Instruction",
    "LoadError",
    "Position",
    "ReportWriter",
    "SharedStateStore",
    "SimulationControl",
    "SimulationEngine",
    "SimulationError",
    "SimulationResult",
    "SimulationStatus",
    "StepCoordinator",
    "UnknownInstruction",
    "WorkerCommunicationFailure",
    "load_flight_plan",
    "parse_flight_plan",
    "parse_instruction",
    "render_grid",
    "render_summary",
    "run_simulation",
    "validate_configs",
]
