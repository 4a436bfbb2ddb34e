"""Scheduled maintenance jobs."""

from relay_service.tasks.retention import run_retention_sweep, sweep

__all__ = ["run_retention_sweep", "sweep"]
