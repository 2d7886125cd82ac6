"""
Google Calendar event provider.

Setup:
1. Create OAuth 2.0 credentials in Google Cloud Console and complete the
   consent flow once, saving token.json to ~/.config/google_calendar/
   (or drop a service_account.json there instead)
2. The daemon only reads events (calendar.readonly scope) and never starts
   an interactive OAuth flow itself
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Sequence

from lamp_monitor.errors import CalendarUnavailableError
from lamp_monitor.paths import GOOGLE_CONFIG_DIR
from lamp_monitor.protocols import CalendarEvent

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar.readonly"]


def _try_load_oauth_token(credentials_cls, token_file: Path, scopes):
    """Try to load OAuth token from file."""
    if token_file.exists():
        try:
            return credentials_cls.from_authorized_user_file(str(token_file), scopes)
        except Exception as exc:
            logger.debug("Suppressed error: %s", exc)
    return None


def _try_refresh_credentials(creds, request_cls, token_file: Path):
    """Try to refresh expired credentials."""
    if creds and creds.expired and creds.refresh_token:
        try:
            creds.refresh(request_cls())
            with open(token_file, "w", encoding="utf-8") as f:
                f.write(creds.to_json())
            return creds
        except Exception as exc:
            logger.debug("Suppressed error: %s", exc)
    return None


def _try_service_account(service_account, account_file: Path, scopes):
    """Try to load service account credentials."""
    if account_file.exists():
        try:
            return service_account.Credentials.from_service_account_file(str(account_file), scopes=scopes)
        except Exception as exc:
            logger.debug("Suppressed error: %s", exc)
    return None


def _parse_time(value: dict) -> tuple[Optional[datetime], bool]:
    """Parse a Calendar API start/end object. Returns (datetime, is_all_day)."""
    if value.get("dateTime"):
        parsed = datetime.fromisoformat(value["dateTime"].replace("Z", "+00:00"))
        all_day = False
    elif value.get("date"):
        parsed = datetime.fromisoformat(value["date"])
        all_day = True
    else:
        return None, False
    # Keep everything comparable with aware "now" values
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed, all_day


def _conference_url(item: dict) -> Optional[str]:
    """Meet link, else the first video entry point, else the event's own URL."""
    if item.get("hangoutLink"):
        return item["hangoutLink"]
    for entry in item.get("conferenceData", {}).get("entryPoints", []):
        if entry.get("entryPointType") == "video" and entry.get("uri"):
            return entry["uri"]
    return item.get("source", {}).get("url")


def event_from_api(item: dict[str, Any]) -> Optional[CalendarEvent]:
    """Map one Calendar API event resource to a CalendarEvent.

    Returns:
        The event, or None for cancelled events or unparseable times
    """
    if item.get("status") == "cancelled":
        return None

    try:
        start, all_day = _parse_time(item.get("start", {}))
    except (ValueError, TypeError):
        return None
    if start is None:
        return None

    attendees = [a for a in item.get("attendees", []) if not a.get("self")]
    return CalendarEvent(
        id=item.get("id", ""),
        start_time=start,
        is_all_day=all_day,
        url=_conference_url(item),
        notes=item.get("description"),
        location=item.get("location"),
        attendee_count=len(attendees),
    )


class GoogleCalendarProvider:
    """List events from one or more Google calendars.

    Args:
        calendar_ids: Calendars to query ("primary" for the user's own)
        config_dir: Directory holding token.json / service_account.json
        service: Pre-built Calendar v3 service (skips credential loading)
    """

    def __init__(
        self,
        calendar_ids: Sequence[str] = ("primary",),
        config_dir: Path = GOOGLE_CONFIG_DIR,
        service: Any = None,
    ):
        self.calendar_ids = list(calendar_ids)
        self.config_dir = Path(config_dir)
        self._service = service

    @property
    def token_file(self) -> Path:
        return self.config_dir / "token.json"

    @property
    def service_account_file(self) -> Path:
        return self.config_dir / "service_account.json"

    @property
    def available(self) -> bool:
        return self._service is not None

    def open(self) -> None:
        """Build the Calendar service.

        Tries the OAuth token first (refreshing if expired), then a service account.

        Raises:
            CalendarUnavailableError: libraries missing or no usable credentials
        """
        if self._service is not None:
            return

        try:
            from google.auth.transport.requests import Request
            from google.oauth2 import service_account
            from google.oauth2.credentials import Credentials
            from googleapiclient.discovery import build
        except ImportError as e:
            raise CalendarUnavailableError(
                "Google API libraries not installed. Run: "
                "pip install google-api-python-client google-auth"
            ) from e

        creds = _try_load_oauth_token(Credentials, self.token_file, SCOPES)
        refreshed = _try_refresh_credentials(creds, Request, self.token_file)
        if refreshed:
            creds = refreshed
        if not creds or not creds.valid:
            creds = _try_service_account(service_account, self.service_account_file, SCOPES)

        if not creds:
            raise CalendarUnavailableError(f"No usable credentials found in {self.config_dir}")

        try:
            self._service = build("calendar", "v3", credentials=creds, cache_discovery=False)
        except Exception as e:
            raise CalendarUnavailableError(f"Failed to build calendar service: {e}") from e

        logger.info(f"Calendar access granted ({len(self.calendar_ids)} calendar(s))")

    def list_events(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        """Events overlapping [start, end] across all configured calendars.

        Raises:
            CalendarUnavailableError: service not opened or every calendar query failed
        """
        if self._service is None:
            raise CalendarUnavailableError("Calendar service not initialized")

        events: list[CalendarEvent] = []
        failures = 0
        for calendar_id in self.calendar_ids:
            try:
                result = (
                    self._service.events()
                    .list(
                        calendarId=calendar_id,
                        timeMin=start.isoformat(),
                        timeMax=end.isoformat(),
                        maxResults=50,
                        singleEvents=True,
                        orderBy="startTime",
                    )
                    .execute()
                )
            except Exception as e:
                failures += 1
                logger.warning(f"Failed to list events for calendar {calendar_id}: {e}")
                continue

            for item in result.get("items", []):
                event = event_from_api(item)
                if event is not None:
                    events.append(event)

        if self.calendar_ids and failures == len(self.calendar_ids):
            raise CalendarUnavailableError("All calendar queries failed")

        return events
