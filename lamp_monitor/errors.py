"""Exception hierarchy for the lamp monitor.

Usage:
    from lamp_monitor.errors import AlreadyRunningError, ActuatorError

    try:
        lock.acquire()
    except AlreadyRunningError as e:
        print(f"Another instance is already running (PID: {e.holder_pid})")
"""

from typing import Optional


class LampMonitorError(Exception):
    """Base exception for all lamp monitor errors."""


class LockError(LampMonitorError):
    """The lock file could not be created or locked."""


class AlreadyRunningError(LockError):
    """The instance lock is held by a live process."""

    def __init__(self, holder_pid: Optional[int] = None):
        self.holder_pid = holder_pid
        super().__init__(f"Another instance is already running (PID: {holder_pid})")


class ConfigValidationError(LampMonitorError):
    """Raised when config validation fails."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__(f"Config validation failed: {'; '.join(errors)}")


class ActuatorError(LampMonitorError):
    """A single actuator invocation failed."""

    def __init__(self, action: str, message: str, returncode: Optional[int] = None):
        self.action = action
        self.returncode = returncode
        super().__init__(message)


class CalendarUnavailableError(LampMonitorError):
    """Calendar access denied, not configured, or the API call failed."""


class ProbeError(LampMonitorError):
    """The presence probe could not determine device activity."""


class StateStoreError(LampMonitorError):
    """The tracker snapshot could not be written."""
