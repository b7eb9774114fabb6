"""
Core Layer - Scheduling and service wiring.

This module provides:
    - MonitoringScheduler: Background heartbeat, ratio and cleanup loops
    - SchedulerConfig: Intervals and cron expression
    - MonitoringServices: Explicit container of every monitoring service
"""

from .scheduler import MonitoringScheduler, SchedulerConfig, next_cron_time
from .services import MonitoringServices, MonitoringSettings

__all__ = [
    "MonitoringScheduler",
    "SchedulerConfig",
    "next_cron_time",
    "MonitoringServices",
    "MonitoringSettings",
]
