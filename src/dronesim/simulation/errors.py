"""Exception taxonomy for loading and running a simulation.

Only LoadError stops a run from starting.  WorkerCommunicationFailure is
raised inside the step protocol and contained by the coordinator; threshold
and step-bound terminations are outcomes recorded on SimulationControl,
not exceptions.
"""

from __future__ import annotations


class SimulationError(Exception):
    """Base class for simulator errors."""


class LoadError(SimulationError):
    """Flight plan input is missing, malformed, or exceeds a configured bound."""

    def __init__(self, message: str, line: int | None = None) -> None:
        self.line = line
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)


class UnknownInstruction(LoadError):
    """An instruction token is not one of the recognised commands.

    The whole agent's plan is rejected rather than skipping the token.
    """

    def __init__(self, token: str, agent_id: int | None = None, line: int | None = None) -> None:
        self.token = token
        self.agent_id = agent_id
        who = f" for drone {agent_id}" if agent_id is not None else ""
        super().__init__(f"unknown instruction '{token}'{who}", line=line)


class WorkerCommunicationFailure(SimulationError):
    """An agent worker did not complete its step within the protocol."""

    def __init__(self, agent_id: int, step: int, reason: str = "timed out") -> None:
        self.agent_id = agent_id
        self.step = step
        self.reason = reason
        super().__init__(f"drone {agent_id} failed at step {step}: {reason}")
