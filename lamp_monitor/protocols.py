"""Protocol definitions for the monitor's external collaborators.

The decision engine never talks to the OS, the calendar API or the lamp
automation directly. It consumes these three interfaces, which keeps the
core testable with plain fakes.

Usage:
    from lamp_monitor.protocols import Actuator, CalendarProvider, PresenceProbe

    def build_loop(probe: PresenceProbe, calendar: CalendarProvider, actuator: Actuator):
        ...

    # Runtime validation
    if isinstance(some_object, PresenceProbe):
        active = some_object.is_active()
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol, runtime_checkable


@dataclass(frozen=True)
class CalendarEvent:
    """A calendar event as seen by the meeting scanner.

    Attributes:
        id: Stable event identifier
        start_time: Timezone-aware start time
        is_all_day: True for date-only events (birthdays, holidays, ...)
        url: Event link or conference link, if any
        notes: Free-text description
        location: Location field (often carries meeting links)
        attendee_count: Attendees besides the calendar owner
    """

    id: str
    start_time: datetime
    is_all_day: bool = False
    url: Optional[str] = None
    notes: Optional[str] = None
    location: Optional[str] = None
    attendee_count: int = 0


@runtime_checkable
class PresenceProbe(Protocol):
    """Answers "is a capture device active right now".

    Must be side-effect-free and return within milliseconds. May raise
    ProbeError when the answer cannot be determined.
    """

    def is_active(self) -> bool: ...


@runtime_checkable
class CalendarProvider(Protocol):
    """Source of upcoming calendar events.

    Implementations raise CalendarUnavailableError when access is denied
    or the backend cannot be reached.
    """

    def open(self) -> None:
        """Prepare access (credentials, API client). Called once at startup."""
        ...

    @property
    def available(self) -> bool:
        """Whether open() succeeded and events can be listed."""
        ...

    def list_events(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        """Return events overlapping [start, end]."""
        ...


@runtime_checkable
class Actuator(Protocol):
    """Executes named actions (e.g. lamp automations).

    run() may block for a few seconds and raises ActuatorError on failure.
    """

    def run(self, action: str) -> None: ...

    def available_actions(self) -> Optional[list[str]]:
        """Names of runnable actions, or None when they cannot be listed."""
        ...
