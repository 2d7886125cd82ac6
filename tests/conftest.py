"""Pytest configuration and shared fixtures."""

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest

# Add project root
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from lamp_monitor.config_manager import MonitorConfig  # noqa: E402
from lamp_monitor.errors import ActuatorError, CalendarUnavailableError, ProbeError  # noqa: E402
from lamp_monitor.protocols import CalendarEvent  # noqa: E402

NOW = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


# ============================================================================
# Fakes for the external collaborators
# ============================================================================


class FakeProbe:
    """Returns scripted readings; None in the script means "raise ProbeError"."""

    def __init__(self, readings=None, default: bool = False):
        self.readings = list(readings or [])
        self.default = default
        self.calls = 0

    def is_active(self) -> bool:
        self.calls += 1
        value = self.readings.pop(0) if self.readings else self.default
        if value is None:
            raise ProbeError("probe failed")
        return value


class FakeCalendar:
    """In-memory calendar filtering events by start time."""

    def __init__(self, events=None, available: bool = True):
        self.events: list[CalendarEvent] = list(events or [])
        self._available = available
        self.fail = False
        self.queries: list[tuple[datetime, datetime]] = []
        self.opened = False

    def open(self) -> None:
        if not self._available:
            raise CalendarUnavailableError("access denied")
        self.opened = True

    @property
    def available(self) -> bool:
        return self._available

    def list_events(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        self.queries.append((start, end))
        if self.fail:
            raise CalendarUnavailableError("backend unreachable")
        return [e for e in self.events if start <= e.start_time <= end]


class RecordingActuator:
    """Records every action; fails the first `failures` calls."""

    def __init__(self, failures: int = 0, actions: Optional[list[str]] = None):
        self.calls: list[str] = []
        self.failures = failures
        self.actions = actions

    def run(self, action: str) -> None:
        self.calls.append(action)
        if self.failures > 0:
            self.failures -= 1
            raise ActuatorError(action, "exit code 1", returncode=1)

    def available_actions(self) -> Optional[list[str]]:
        return self.actions


def make_meeting(
    meeting_id: str,
    starts_in: timedelta,
    now: datetime = NOW,
    url: Optional[str] = "https://zoom.us/j/123",
    attendees: int = 0,
    all_day: bool = False,
    **kwargs,
) -> CalendarEvent:
    return CalendarEvent(
        id=meeting_id,
        start_time=now + starts_in,
        is_all_day=all_day,
        url=url,
        attendee_count=attendees,
        **kwargs,
    )


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def now():
    """Fixed reference time (timezone-aware)."""
    return NOW


@pytest.fixture
def state_dir(tmp_path):
    """Return a temporary state directory."""
    path = tmp_path / "state"
    path.mkdir()
    return path


@pytest.fixture
def config(state_dir):
    """Default config pointed at a temporary state directory."""
    return MonitorConfig(state_dir=state_dir, retry_delay_seconds=0)


@pytest.fixture
def fake_probe():
    return FakeProbe()


@pytest.fixture
def fake_calendar():
    return FakeCalendar()


@pytest.fixture
def actuator():
    return RecordingActuator()


@pytest.fixture(autouse=True)
def setup_env():
    """Keep tests independent of the user's lamp monitor environment."""
    # Save original values
    original_env = dict(os.environ)

    for key in list(os.environ):
        if key.startswith("LAMP_MONITOR_") or key in ("NOTIFY_SOCKET", "WATCHDOG_USEC"):
            del os.environ[key]
    os.environ.setdefault("TESTING", "1")

    yield

    # Restore original environment
    os.environ.clear()
    os.environ.update(original_env)
