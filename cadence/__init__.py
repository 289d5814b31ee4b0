"""
Cadence — in-process calendar task scheduling.

Public API:
    from cadence import Scheduler, RecurrenceRule, RecurrenceSpec
"""

__version__ = "0.1.0"

# Core
from cadence.core.config import CadenceConfig, SchedulerConfig
from cadence.core.errors import ArgumentError, CadenceError, ConfigError, ValidationError
from cadence.core.logging import setup_logging

# Scheduler
from cadence.scheduler.engine import Scheduler
from cadence.scheduler.recurrence import RecurrenceRule, RecurrenceSpec
from cadence.scheduler.task import Task

__all__ = [
    # Core
    "CadenceConfig",
    "SchedulerConfig",
    "CadenceError",
    "ArgumentError",
    "ValidationError",
    "ConfigError",
    "setup_logging",
    # Scheduler
    "Scheduler",
    "RecurrenceRule",
    "RecurrenceSpec",
    "Task",
]
