"""Tests for lamp_monitor/calendar_provider.py - Google Calendar mapping and queries."""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from lamp_monitor.calendar_provider import GoogleCalendarProvider, event_from_api
from lamp_monitor.errors import CalendarUnavailableError

NOW = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


def mock_service(pages):
    """Service whose events().list(...).execute() returns pages per calendarId."""
    service = MagicMock()

    def list_events(calendarId, **kwargs):
        request = MagicMock()
        page = pages[calendarId]
        if isinstance(page, Exception):
            request.execute.side_effect = page
        else:
            request.execute.return_value = page
        return request

    service.events.return_value.list.side_effect = list_events
    return service


class TestEventFromApi:
    def test_timed_event_with_meet_link(self):
        event = event_from_api(
            {
                "id": "abc",
                "start": {"dateTime": "2024-03-04T10:00:00+01:00"},
                "hangoutLink": "https://meet.google.com/aaa-bbbb-ccc",
                "attendees": [{"email": "me@example.com", "self": True}, {"email": "you@example.com"}],
            }
        )

        assert event.id == "abc"
        assert event.start_time == NOW
        assert event.is_all_day is False
        assert event.url == "https://meet.google.com/aaa-bbbb-ccc"
        assert event.attendee_count == 1

    def test_utc_z_suffix(self):
        event = event_from_api({"id": "a", "start": {"dateTime": "2024-03-04T09:00:00Z"}})

        assert event.start_time == NOW

    def test_all_day_event(self):
        event = event_from_api({"id": "bday", "start": {"date": "2024-03-04"}})

        assert event.is_all_day is True
        assert event.start_time.tzinfo is not None

    def test_conference_entry_point(self):
        event = event_from_api(
            {
                "id": "z",
                "start": {"dateTime": "2024-03-04T09:00:00Z"},
                "conferenceData": {
                    "entryPoints": [
                        {"entryPointType": "phone", "uri": "tel:+1-555"},
                        {"entryPointType": "video", "uri": "https://zoom.us/j/1"},
                    ]
                },
            }
        )

        assert event.url == "https://zoom.us/j/1"

    def test_description_and_location(self):
        event = event_from_api(
            {
                "id": "x",
                "start": {"dateTime": "2024-03-04T09:00:00Z"},
                "description": "Agenda",
                "location": "Room 1",
            }
        )

        assert event.notes == "Agenda"
        assert event.location == "Room 1"
        assert event.url is None

    @pytest.mark.parametrize(
        "item",
        [
            {"id": "c", "status": "cancelled", "start": {"dateTime": "2024-03-04T09:00:00Z"}},
            {"id": "n", "start": {}},
            {"id": "b", "start": {"dateTime": "not a date"}},
        ],
    )
    def test_skipped_items(self, item):
        assert event_from_api(item) is None


class TestGoogleCalendarProvider:
    def test_unavailable_before_open(self, tmp_path):
        provider = GoogleCalendarProvider(config_dir=tmp_path)

        assert provider.available is False
        with pytest.raises(CalendarUnavailableError):
            provider.list_events(NOW, NOW + timedelta(minutes=5))

    def test_prebuilt_service_is_available(self):
        provider = GoogleCalendarProvider(service=MagicMock())

        provider.open()

        assert provider.available is True

    def test_open_without_credentials(self, tmp_path):
        pytest.importorskip("googleapiclient")
        provider = GoogleCalendarProvider(config_dir=tmp_path)

        with pytest.raises(CalendarUnavailableError, match="No usable credentials"):
            provider.open()
        assert provider.available is False

    def test_open_with_oauth_token(self, tmp_path):
        pytest.importorskip("googleapiclient")
        (tmp_path / "token.json").write_text("{}")
        creds = MagicMock(valid=True, expired=False)

        with (
            patch("google.oauth2.credentials.Credentials.from_authorized_user_file", return_value=creds),
            patch("googleapiclient.discovery.build", return_value=MagicMock()) as mock_build,
        ):
            provider = GoogleCalendarProvider(config_dir=tmp_path)
            provider.open()

        assert provider.available is True
        mock_build.assert_called_once_with("calendar", "v3", credentials=creds, cache_discovery=False)

    def test_list_events_merges_calendars(self):
        service = mock_service(
            {
                "primary": {"items": [{"id": "a", "start": {"dateTime": "2024-03-04T09:03:00Z"}}]},
                "team": {
                    "items": [
                        {"id": "b", "start": {"dateTime": "2024-03-04T09:04:00Z"}},
                        {"id": "c", "status": "cancelled", "start": {"dateTime": "2024-03-04T09:04:00Z"}},
                    ]
                },
            }
        )
        provider = GoogleCalendarProvider(calendar_ids=["primary", "team"], service=service)

        events = provider.list_events(NOW, NOW + timedelta(minutes=5))

        assert [e.id for e in events] == ["a", "b"]
        _, kwargs = service.events.return_value.list.call_args
        assert kwargs["singleEvents"] is True
        assert kwargs["timeMin"] == NOW.isoformat()

    def test_one_failing_calendar_is_tolerated(self):
        service = mock_service(
            {
                "primary": {"items": [{"id": "a", "start": {"dateTime": "2024-03-04T09:03:00Z"}}]},
                "team": RuntimeError("403 Forbidden"),
            }
        )
        provider = GoogleCalendarProvider(calendar_ids=["primary", "team"], service=service)

        assert [e.id for e in provider.list_events(NOW, NOW)] == ["a"]

    def test_all_calendars_failing_raises(self):
        service = mock_service({"primary": RuntimeError("network down")})
        provider = GoogleCalendarProvider(service=service)

        with pytest.raises(CalendarUnavailableError):
            provider.list_events(NOW, NOW)
