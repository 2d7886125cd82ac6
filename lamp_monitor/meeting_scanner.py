"""
Meeting Scanner.

Decides which calendar events are real meetings, warns once per meeting
shortly before it starts, and expires a warning nobody acted on.

Features:
- Meeting filter: not all-day AND (video-conference link OR other attendees)
- Warn-once per meeting id inside the warning window
- Warning expiry once a warned meeting is one window past its start
  with the camera still off
- Garbage collection of tracked ids against recent/upcoming events
- Write-through persistence so a restart neither re-warns nor forgets
  to expire
"""

import logging
import uuid
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Optional

from lamp_monitor.config_manager import DEFAULT_VIDEO_LINK_PATTERNS, MonitorConfig
from lamp_monitor.errors import CalendarUnavailableError
from lamp_monitor.protocols import CalendarEvent, CalendarProvider
from lamp_monitor.state_store import StateStore, TrackerSnapshot

logger = logging.getLogger(__name__)


def has_video_link(event: CalendarEvent, patterns: Iterable[str] = DEFAULT_VIDEO_LINK_PATTERNS) -> bool:
    """Check the link, notes and location fields for a conference pattern."""
    patterns = [p.lower() for p in patterns]
    for text in (event.url, event.notes, event.location):
        if not text:
            continue
        lowered = text.lower()
        if any(pattern in lowered for pattern in patterns):
            return True
    return False


def has_attendees(event: CalendarEvent) -> bool:
    """More than just yourself means it's a real meeting."""
    return event.attendee_count > 0


def is_qualifying_meeting(event: CalendarEvent, patterns: Iterable[str] = DEFAULT_VIDEO_LINK_PATTERNS) -> bool:
    """Whether an event counts as a meeting worth warning about.

    All-day events (birthdays, holidays, reminders) never qualify. Anything
    else qualifies if it has a video-conference reference or attendees.
    """
    if event.is_all_day:
        logger.debug(f"Event {event.id} is all-day, skipping")
        return False

    has_video = has_video_link(event, patterns)
    has_atts = has_attendees(event)
    logger.debug(f"Event {event.id}: video_link={has_video}, attendees={has_atts}")
    return has_video or has_atts


class MeetingScanner:
    """
    Warn/expire tracker for upcoming meetings.

    Owned and driven by the orchestration loop; not thread-safe.

    Args:
        calendar: Event source, or None when meeting warnings are disabled
        store: Durable storage for the tracker snapshot
        config: Monitor configuration (window sizes, action names, patterns)
        tracker: Initial tracker state, usually store.load()
    """

    def __init__(
        self,
        calendar: Optional[CalendarProvider],
        store: StateStore,
        config: MonitorConfig,
        tracker: Optional[TrackerSnapshot] = None,
    ):
        self.calendar = calendar
        self.store = store
        self.tracker = tracker if tracker is not None else TrackerSnapshot()

        self.warning_window: timedelta = config.warning_window
        self.lookahead_buffer: timedelta = config.lookahead_buffer
        self.cleanup_window: timedelta = config.cleanup_window
        self.patterns = config.video_link_patterns
        self.warn_action = config.actions.warn
        self.cancel_action = config.actions.off

    @property
    def in_warning_state(self) -> bool:
        return self.tracker.in_warning_state

    def persist(self) -> bool:
        """Write the full tracker through to the store (failures are logged)."""
        return self.store.try_save(self.tracker)

    def _calendar_ready(self) -> bool:
        return self.calendar is not None and self.calendar.available

    # ==================== Scan ====================

    def upcoming_meetings(self, now: datetime) -> list[CalendarEvent]:
        """Qualifying events starting in (now, now + warning window].

        Raises:
            CalendarUnavailableError: the calendar could not be queried
        """
        events = self.calendar.list_events(now, now + self.warning_window + self.lookahead_buffer)

        upcoming = []
        for event in events:
            until_start = event.start_time - now
            if timedelta(0) < until_start <= self.warning_window and is_qualifying_meeting(event, self.patterns):
                upcoming.append(event)
        return upcoming

    def scan(self, now: datetime, presence_active: bool) -> list[str]:
        """Check for meetings about to start.

        Args:
            now: Current time (timezone-aware)
            presence_active: Whether the camera is confirmed active

        Returns:
            Actions to submit (one warning per newly seen meeting)
        """
        if not self._calendar_ready():
            logger.debug("Skipping meeting check: calendar not available")
            return []

        # A live session suppresses new warnings
        if presence_active:
            logger.debug("Skipping meeting check: camera already active")
            return []

        try:
            upcoming = self.upcoming_meetings(now)
        except CalendarUnavailableError as e:
            logger.warning(f"Skipping meeting check: {e}")
            return []

        logger.debug(f"Found {len(upcoming)} upcoming meeting(s)")

        actions: list[str] = []
        upcoming_ids: set[str] = set()
        for meeting in upcoming:
            meeting_id = meeting.id or str(uuid.uuid4())
            upcoming_ids.add(meeting_id)

            # Only warn once per meeting
            if meeting_id in self.tracker.warned_ids:
                continue

            minutes_until = int((meeting.start_time - now).total_seconds() / 60)
            logger.info(f"Upcoming meeting in {minutes_until} min (ID: {meeting_id})")
            actions.append(self.warn_action)
            self.tracker.warned_ids.add(meeting_id)
            self.tracker.meeting_start_times[meeting_id] = meeting.start_time
            self.tracker.in_warning_state = True
            self.persist()

        self._cleanup(now, upcoming_ids)
        return actions

    def _cleanup(self, now: datetime, upcoming_ids: set[str]) -> None:
        """Drop tracked ids no longer seen among recent or upcoming events."""
        try:
            recent = self.calendar.list_events(now - self.cleanup_window, now)
        except CalendarUnavailableError as e:
            logger.warning(f"Skipping meeting cleanup: {e}")
            return

        valid_ids = {event.id for event in recent if event.id} | upcoming_ids

        warned = self.tracker.warned_ids & valid_ids
        starts = {k: v for k, v in self.tracker.meeting_start_times.items() if k in valid_ids}
        if warned == self.tracker.warned_ids and starts.keys() == self.tracker.meeting_start_times.keys():
            return

        dropped = len(self.tracker.warned_ids) - len(warned)
        logger.debug(f"Cleaned up {dropped} old meeting id(s)")
        self.tracker.warned_ids = warned
        self.tracker.meeting_start_times = starts
        self.persist()

    # ==================== Expiration ====================

    def check_expiration(self, now: datetime, presence_active: bool) -> Optional[str]:
        """Expire the warning when warned meetings started without the camera.

        Args:
            now: Current time (timezone-aware)
            presence_active: Whether the camera is confirmed active

        Returns:
            The cancel action if the warning expired, else None
        """
        if not self.tracker.in_warning_state or presence_active:
            return None

        expired = []
        for meeting_id, start_time in self.tracker.meeting_start_times.items():
            since_start = now - start_time
            if since_start >= self.warning_window:
                logger.debug(
                    f"Meeting expired: started {int(since_start.total_seconds() / 60)} min ago "
                    f"without camera activation (ID: {meeting_id})"
                )
                expired.append(meeting_id)

        if not expired:
            return None

        logger.info(f"Warning expired: {len(expired)} meeting(s) started without camera activation")
        self.tracker.in_warning_state = False
        for meeting_id in expired:
            del self.tracker.meeting_start_times[meeting_id]
        self.persist()
        return self.cancel_action

    def clear_warning(self) -> bool:
        """Leave the warning state (camera came on). Returns True if it changed."""
        if not self.tracker.in_warning_state:
            return False
        self.tracker.in_warning_state = False
        self.persist()
        return True
