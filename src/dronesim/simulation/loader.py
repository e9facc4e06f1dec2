"""Load a drone flight-plan CSV into AgentConfig objects.

Format
------
One header row (skipped), then one row per drone::

    id,x,y,z,instructions
    1,0,0,0,UP;FORWARD;RIGHT
    2,5,5,0,LEFT; LEFT ;SHAKE

Instruction tokens are ``;``-separated with surrounding whitespace trimmed.
Any malformed row fails the whole load: a simulation never starts from a
partial plan.  Unknown tokens raise UnknownInstruction (a LoadError) for the
row's drone.  Bounds come from Settings rather than constants.

The loader is stateless: it reads text and returns configs.
"""

from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import TYPE_CHECKING

from loguru import logger
from pydantic import ValidationError

from .errors import LoadError, UnknownInstruction
from .plan import AgentConfig, Instruction

if TYPE_CHECKING:
    from dronesim.app.config import Settings


def parse_instruction(token: str, agent_id: int | None = None, line: int | None = None) -> Instruction:
    """Convert one instruction token to an Instruction, rejecting unknown names."""
    name = token.strip().upper()
    try:
        return Instruction(name)
    except ValueError:
        raise UnknownInstruction(token.strip(), agent_id=agent_id, line=line) from None


def _parse_int(value: str, what: str, line: int) -> int:
    try:
        return int(value.strip())
    except ValueError:
        raise LoadError(f"{what} is not an integer: '{value.strip()}'", line=line) from None


def parse_flight_plan(text: str, settings: Settings | None = None) -> list[AgentConfig]:
    """Parse CSV flight-plan *text* into AgentConfigs, in file order."""
    if settings is None:
        from dronesim.app.config import settings

    lines = text.splitlines()
    if not lines or not lines[0].strip():
        raise LoadError("flight plan is empty (no header row)")

    configs: list[AgentConfig] = []
    seen_ids: set[int] = set()

    # Header is line 1; data rows start at line 2
    reader = csv.reader(io.StringIO("\n".join(lines[1:])))
    for offset, row in enumerate(reader):
        line = offset + 2
        if not row or all(not cell.strip() for cell in row):
            continue
        if len(row) < 4:
            raise LoadError(f"expected id,x,y,z[,instructions], got {len(row)} column(s)", line=line)

        agent_id = _parse_int(row[0], "drone id", line)
        x = _parse_int(row[1], "x", line)
        y = _parse_int(row[2], "y", line)
        z = _parse_int(row[3], "z", line)

        if agent_id in seen_ids:
            raise LoadError(f"duplicate drone id {agent_id}", line=line)

        # Anything after the fourth comma belongs to the instruction field
        raw_instructions = ",".join(row[4:])
        tokens = [t for t in raw_instructions.split(";") if t.strip()]
        if len(tokens) > settings.max_instructions:
            raise LoadError(
                f"drone {agent_id} has {len(tokens)} instructions "
                f"(max {settings.max_instructions})",
                line=line,
            )
        instructions = tuple(parse_instruction(t, agent_id=agent_id, line=line) for t in tokens)

        if len(configs) >= settings.max_agents:
            raise LoadError(f"more than {settings.max_agents} drones in flight plan", line=line)

        try:
            config = AgentConfig(id=agent_id, initial_position=(x, y, z), instructions=instructions)
        except ValidationError as e:
            raise LoadError(f"invalid drone definition: {e}", line=line) from e

        seen_ids.add(agent_id)
        configs.append(config)

    return configs


def load_flight_plan(path: str | Path, settings: Settings | None = None) -> list[AgentConfig]:
    """Read a flight-plan CSV file.  Raises LoadError if it cannot be read."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise LoadError(f"cannot read flight plan {path}: {e}") from e

    configs = parse_flight_plan(text, settings)
    if not configs:
        logger.warning(f"No drones loaded from {path}")
    else:
        logger.info(f"Loaded {len(configs)} drone(s) from {path}")
    return configs
