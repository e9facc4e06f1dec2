"""Flight plans — the immutable per-drone input to a simulation.

An AgentConfig is created once at load time and never mutated.  Movement
semantics live in the _DELTAS lookup table rather than in per-instruction
code: every instruction is a fixed (dx, dy, dz) on the integer grid, and
SHAKE / ROTATE are zero vectors.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

Position = tuple[int, int, int]


class Instruction(str, Enum):
    """Commands a drone can execute, one per step."""

    UP = "UP"
    DOWN = "DOWN"
    LEFT = "LEFT"
    RIGHT = "RIGHT"
    FORWARD = "FORWARD"
    BACKWARD = "BACKWARD"
    SHAKE = "SHAKE"
    ROTATE = "ROTATE"

    @property
    def delta(self) -> Position:
        return _DELTAS[self]

    def apply(self, position: Position) -> Position:
        """Return *position* moved by this instruction."""
        dx, dy, dz = _DELTAS[self]
        return (position[0] + dx, position[1] + dy, position[2] + dz)


# (dx, dy, dz) per instruction.  z is altitude, y is forward.
_DELTAS: dict[Instruction, Position] = {
    Instruction.UP: (0, 0, 1),
    Instruction.DOWN: (0, 0, -1),
    Instruction.LEFT: (-1, 0, 0),
    Instruction.RIGHT: (1, 0, 0),
    Instruction.FORWARD: (0, 1, 0),
    Instruction.BACKWARD: (0, -1, 0),
    Instruction.SHAKE: (0, 0, 0),
    Instruction.ROTATE: (0, 0, 0),
}


class AgentConfig(BaseModel):
    """One drone's identity, start position and ordered instruction sequence."""

    model_config = ConfigDict(frozen=True)

    id: int
    initial_position: Position
    instructions: tuple[Instruction, ...] = Field(default_factory=tuple)

    @property
    def instruction_count(self) -> int:
        return len(self.instructions)

    def final_position(self) -> Position:
        """Position after every instruction has been applied."""
        pos = self.initial_position
        for instr in self.instructions:
            pos = instr.apply(pos)
        return pos
