"""Unit tests for the grid and state-list renderers."""
from __future__ import annotations

import pytest

from dronesim.simulation.display import render_grid, render_summary
from dronesim.simulation.plan import AgentConfig
from dronesim.simulation.state import AgentSnapshot


pytestmark = pytest.mark.unit


def _snap(agent_id, position, active=True, finished=False, index=-1) -> AgentSnapshot:
    return AgentSnapshot(
        agent_id=agent_id,
        position=position,
        active=active,
        finished=finished,
        last_executed_index=index,
    )


class TestRenderGrid:

    def test_layout(self):
        text = render_grid([], step=4, width=5, height=3)
        lines = text.splitlines()
        assert lines[0] == "Time Step 4 - Drone Grid (X:0-4, Y:0-2):"
        assert lines[1] == "  +-----+"
        assert lines[2:5] == [" 2|.....|", " 1|.....|", " 0|.....|"]
        assert lines[5] == "  +-----+"
        assert lines[6].startswith("  Legend:")

    def test_y_axis_points_up(self):
        lines = render_grid([_snap(7, (1, 2, 0))], step=1, width=3, height=3).splitlines()
        assert lines[2] == " 2|.7.|"
        assert lines[4] == " 0|...|"

    def test_ids_use_last_digit(self):
        lines = render_grid([_snap(12, (0, 0, 0))], step=1, width=2, height=1).splitlines()
        assert lines[2] == " 0|2.|"

    def test_shared_cell_is_star_regardless_of_altitude(self):
        snaps = [_snap(1, (1, 0, 0)), _snap(2, (1, 0, 5))]
        lines = render_grid(snaps, step=1, width=3, height=1).splitlines()
        assert lines[2] == " 0|.*.|"

    def test_off_grid_drones_omitted(self):
        snaps = [_snap(1, (-1, 0, 0)), _snap(2, (3, 0, 0)), _snap(3, (0, 5, 0))]
        lines = render_grid(snaps, step=1, width=3, height=1).splitlines()
        assert lines[2] == " 0|...|"


class TestRenderSummary:

    def test_status_and_progress(self):
        configs = [
            AgentConfig(id=1, initial_position=(0, 0, 0), instructions=("UP", "UP")),
            AgentConfig(id=2, initial_position=(0, 0, 0), instructions=("UP",)),
            AgentConfig(id=3, initial_position=(0, 0, 0), instructions=("UP",)),
        ]
        snaps = [
            _snap(1, (0, 0, 1), index=0),
            _snap(2, (0, 0, 1), active=False, finished=True, index=0),
            _snap(3, (-4, 10, 0), active=False),
        ]
        lines = render_summary(snaps, configs, step=1).splitlines()
        assert lines[0] == "Drone States List (Time Step 1):"
        assert lines[1] == "  Drone ID  1: Pos (  0,   0,   1) - Status: Active     - Instr: 1/2"
        assert lines[2] == "  Drone ID  2: Pos (  0,   0,   1) - Status: FINISHED   - Instr: 1/1"
        assert lines[3] == "  Drone ID  3: Pos ( -4,  10,   0) - Status: Inactive   - Instr: 0/1"
