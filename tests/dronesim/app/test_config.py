"""Unit tests for Settings — defaults, overrides and DRONESIM_* env vars."""
from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from dronesim.app.config import Settings


pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    """Run from an empty directory so no stray .env file is picked up."""
    monkeypatch.chdir(tmp_path)
    for name in ("MAX_AGENTS", "MAX_STEPS", "COLLISION_THRESHOLD", "REPORT_PATH", "DISPLAY_ENABLED"):
        monkeypatch.delenv(f"DRONESIM_{name}", raising=False)


class TestDefaults:

    def test_bounds(self):
        s = Settings()
        assert s.max_agents == 10
        assert s.max_instructions == 50
        assert s.max_steps == 100
        assert s.collision_threshold == 3

    def test_files_and_display(self):
        s = Settings()
        assert s.plan_path == Path("drones_flight_plan.csv")
        assert s.report_path == Path("simulation_report.txt")
        assert s.display_enabled is True
        assert (s.grid_width, s.grid_height) == (20, 10)
        assert s.step_delay == 0.0


class TestOverrides:

    def test_keyword_overrides(self):
        s = Settings(max_steps=7, collision_threshold=1)
        assert s.max_steps == 7
        assert s.collision_threshold == 1

    def test_environment_prefix(self, monkeypatch):
        monkeypatch.setenv("DRONESIM_COLLISION_THRESHOLD", "9")
        monkeypatch.setenv("DRONESIM_DISPLAY_ENABLED", "false")
        s = Settings()
        assert s.collision_threshold == 9
        assert s.display_enabled is False

    def test_env_file(self, tmp_path):
        (tmp_path / ".env").write_text("DRONESIM_MAX_AGENTS=4\n")
        assert Settings().max_agents == 4

    def test_keyword_beats_environment(self, monkeypatch):
        monkeypatch.setenv("DRONESIM_MAX_STEPS", "20")
        assert Settings(max_steps=30).max_steps == 30


class TestValidation:

    @pytest.mark.parametrize("field", [
        "max_agents", "max_instructions", "max_steps", "collision_threshold",
    ])
    def test_bounds_must_be_positive(self, field):
        with pytest.raises(ValidationError):
            Settings(**{field: 0})

    def test_negative_step_delay(self):
        with pytest.raises(ValidationError):
            Settings(step_delay=-1)

    def test_zero_timeout(self):
        with pytest.raises(ValidationError):
            Settings(worker_timeout=0)
