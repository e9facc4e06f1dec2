"""Shared fixtures for dronesim tests."""

from __future__ import annotations

import sys

import pytest
from loguru import logger

PLAN_HEADER = "drone_id,start_x,start_y,start_z,instructions\n"


@pytest.fixture(autouse=True)
def _loguru_sink():
    """Log warnings and above to stderr; undo any sink changes a test makes."""
    logger.remove()
    logger.add(sys.stderr, level="WARNING")
    yield
    logger.remove()
    logger.add(sys.stderr, level="WARNING")


@pytest.fixture
def plan_file(tmp_path):
    """Factory: write CSV rows under the standard header, return the path."""

    def _write(rows: str, name: str = "plan.csv"):
        path = tmp_path / name
        path.write_text(PLAN_HEADER + rows)
        return path

    return _write
