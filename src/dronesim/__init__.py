"""dronesim — lock-step multi-drone flight-plan simulator."""

__version__ = "0.1.0"
