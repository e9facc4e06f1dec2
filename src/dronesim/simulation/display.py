"""Text rendering of a step snapshot — grid view and per-drone state list.

Read-only: takes AgentSnapshots and returns strings.  The grid shows the
X/Y plane with Y increasing upward; altitude is not drawn, so drones at
different heights over one cell still share a ``*``.
"""

from __future__ import annotations

from typing import Iterable

from .plan import AgentConfig
from .state import AgentSnapshot


def render_grid(
    snapshot: Iterable[AgentSnapshot],
    step: int,
    width: int = 20,
    height: int = 10,
) -> str:
    """Draw drones on a width x height grid.  Off-grid drones are omitted."""
    grid = [["." for _ in range(width)] for _ in range(height)]
    for s in snapshot:
        x, y, _ = s.position
        if not (0 <= x < width and 0 <= y < height):
            continue
        if grid[y][x] == ".":
            grid[y][x] = str(s.agent_id % 10)
        else:
            grid[y][x] = "*"

    border = "  +" + "-" * width + "+"
    lines = [
        f"Time Step {step} - Drone Grid (X:0-{width - 1}, Y:0-{height - 1}):",
        border,
    ]
    for y in range(height - 1, -1, -1):
        lines.append(f"{y:2d}|" + "".join(grid[y]) + "|")
    lines.append(border)
    lines.append("  Legend: '.' = empty, '0-9' = Drone ID, '*' = multiple drones in cell (X,Y)")
    return "\n".join(lines)


def _status(s: AgentSnapshot) -> str:
    if s.finished:
        return "FINISHED"
    if s.active:
        return "Active"
    return "Inactive"


def render_summary(
    snapshot: Iterable[AgentSnapshot],
    configs: Iterable[AgentConfig],
    step: int,
) -> str:
    """One line per drone: position, status and instruction progress."""
    totals = {c.id: c.instruction_count for c in configs}
    lines = [f"Drone States List (Time Step {step}):"]
    for s in snapshot:
        x, y, z = s.position
        lines.append(
            f"  Drone ID {s.agent_id:2d}: Pos ({x:3d}, {y:3d}, {z:3d}) - "
            f"Status: {_status(s):<10s} - "
            f"Instr: {s.last_executed_index + 1}/{totals.get(s.agent_id, 0)}"
        )
    return "\n".join(lines)
