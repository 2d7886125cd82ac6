"""
Base infrastructure for the lamp monitor daemon.

- BaseDaemon: Base class with CLI, signals, and lifecycle management
- InstanceLock: Lock file management for single-instance enforcement
- SleepWakeAwareDaemon: Mixin for sleep/wake detection
"""

from lamp_monitor.base.daemon import BaseDaemon, InstanceLock, is_process_running, sd_notify
from lamp_monitor.base.sleep_wake import SleepWakeAwareDaemon, SleepWakeMonitor

__all__ = [
    # daemon.py
    "BaseDaemon",
    "InstanceLock",
    "is_process_running",
    "sd_notify",
    # sleep_wake.py
    "SleepWakeMonitor",
    "SleepWakeAwareDaemon",
]
