"""Configuration management using Pydantic settings."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Simulator settings loaded from environment variables (``DRONESIM_*``)."""

    model_config = SettingsConfigDict(
        env_prefix="DRONESIM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Run bounds
    max_agents: int = Field(default=10, gt=0)
    max_instructions: int = Field(default=50, gt=0)
    max_steps: int = Field(default=100, gt=0)
    collision_threshold: int = Field(default=3, gt=0)

    # Step protocol timeouts (seconds)
    worker_timeout: float = Field(default=5.0, gt=0)
    detector_timeout: float = Field(default=5.0, gt=0)

    # Pause after each step so a human can follow the display
    step_delay: float = Field(default=0.0, ge=0)

    # Files
    plan_path: Path = Path("drones_flight_plan.csv")
    report_path: Path = Path("simulation_report.txt")

    # Text display
    display_enabled: bool = True
    grid_width: int = Field(default=20, gt=0)
    grid_height: int = Field(default=10, gt=0)

    log_level: str = "INFO"


settings = Settings()
