"""Tests for Google Calendar OAuth, token refresh and trip event sync."""

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest

from agents.gcal import (
    GoogleCalendarClient,
    build_event,
    build_event_description,
    calendar_oauth_handler,
    calendar_sync_handler,
    refresh_token_handler,
)
from agents.gcal.google import EVENTS_URL, TOKEN_URL
from conftest import FakeResponse, FakeSession

TRIP = {
    "trip_name": "Berlin Summit",
    "city": "Berlin",
    "country": "Germany",
    "beginning_date": "2026-05-01",
    "ending_date": "2026-05-03",
    "client_or_event": "Acme GmbH",
    "flight_needed": True,
    "airline": "Lufthansa",
    "flight_number": "LH 400",
    "departure_time": "2026-05-01T08:00",
    "return_airline": "Lufthansa",
    "return_flight_number": "LH 401",
    "flight_confirmation": "ABC123",
    "hotel_needed": True,
    "hotel_name": "Hotel Adlon",
    "hotel_checkin_date": "2026-05-01",
    "car_needed": False,
    "car_rental_company": "Sixt",
    "internal_notes": "Bring badge",
}


def google_with(*responses):
    session = FakeSession(*responses)
    return GoogleCalendarClient(client_id="cid", client_secret="secret", session=session), session


def future(minutes=60):
    return (datetime.now(timezone.utc) + timedelta(minutes=minutes)).isoformat()


@pytest.fixture
def connected(temp_db, user_id):
    """A user with a live access token and one trip."""
    temp_db.update_profile(user_id, {
        "google_calendar_connected": True,
        "google_access_token": "live-token",
        "google_token_expires_at": future(),
    })
    temp_db.store_refresh_token(user_id, "refresh-1")
    trip_id = temp_db.create_trip(user_id, dict(TRIP))
    return user_id, trip_id


# ---------------------------------------------------------------- event body

def test_event_is_all_day_with_exclusive_end():
    event = build_event(TRIP)
    assert event["summary"] == "Berlin Summit"
    assert event["start"] == {"date": "2026-05-01", "timeZone": "UTC"}
    assert event["end"] == {"date": "2026-05-04", "timeZone": "UTC"}
    assert event["location"] == "Berlin, Germany"


def test_event_end_rolls_over_month():
    event = build_event(dict(TRIP, beginning_date="2026-01-30", ending_date="2026-01-31"))
    assert event["end"]["date"] == "2026-02-01"


def test_location_without_country_is_city_only():
    assert build_event(dict(TRIP, country=None))["location"] == "Berlin"


def test_description_lists_trip_details():
    description = build_event_description(TRIP)
    assert description.splitlines()[0] == "Berlin Summit"
    assert "Client/Event: Acme GmbH" in description
    assert "- Outbound: Lufthansa LH 400 departing 2026-05-01T08:00" in description
    assert "- Return: Lufthansa LH 401" in description
    assert "- Confirmation: ABC123" in description
    assert "Hotel:\n- Hotel Adlon\n- Check-in: 2026-05-01" in description
    assert "Car Rental" not in description
    assert description.endswith("Notes: Bring badge")


# ---------------------------------------------------------------- oauth

def test_auth_url_requests_offline_calendar_access():
    client, _ = google_with()
    payload, status = calendar_oauth_handler(1, {"action": "get_auth_url"}, "https://app.example.com", client=client)

    assert status == 200
    query = parse_qs(urlparse(payload["authUrl"]).query)
    assert query["scope"] == ["https://www.googleapis.com/auth/calendar"]
    assert query["access_type"] == ["offline"]
    assert query["prompt"] == ["consent"]
    assert query["redirect_uri"] == ["https://app.example.com/oauth/callback"]
    assert query["client_id"] == ["cid"]


def test_missing_code_is_bad_request():
    client, _ = google_with()
    payload, status = calendar_oauth_handler(1, {}, "https://app.example.com", client=client)
    assert status == 400
    assert payload == {"error": "Authorization code required"}


def test_code_exchange_stores_tokens(temp_db, user_id):
    client, session = google_with(FakeResponse(200, {
        "access_token": "at-1", "refresh_token": "rt-1", "expires_in": 3600,
    }))

    payload, status = calendar_oauth_handler(user_id, {"code": "auth-code"}, "https://app.example.com", client=client)

    assert status == 200
    assert payload["success"] is True
    assert session.calls[0].url == TOKEN_URL
    assert session.calls[0].data["grant_type"] == "authorization_code"
    assert session.calls[0].data["redirect_uri"] == "https://app.example.com/oauth/callback"
    profile = temp_db.get_profile(user_id)
    assert profile["google_calendar_connected"] is True
    assert profile["google_access_token"] == "at-1"
    assert not temp_db.token_expired(profile["google_token_expires_at"])
    assert temp_db.get_refresh_token(user_id) == "rt-1"


def test_failed_code_exchange_is_server_error(temp_db, user_id):
    client, _ = google_with(FakeResponse(400, {"error": "invalid_grant"}))
    payload, status = calendar_oauth_handler(user_id, {"code": "stale"}, "https://app.example.com", client=client)
    assert status == 500
    assert payload == {"error": "Failed to exchange authorization code"}


def test_refresh_without_refresh_token_is_bad_request(temp_db, user_id):
    client, _ = google_with()
    payload, status = refresh_token_handler(user_id, client=client)
    assert status == 400
    assert payload == {"error": "No refresh token found"}


def test_refresh_updates_access_token(connected, temp_db):
    user_id, _ = connected
    client, session = google_with(FakeResponse(200, {"access_token": "at-2", "expires_in": 3600}))

    payload, status = refresh_token_handler(user_id, client=client)

    assert status == 200
    assert payload["access_token"] == "at-2"
    assert session.calls[0].data["refresh_token"] == "refresh-1"
    assert temp_db.get_profile(user_id)["google_access_token"] == "at-2"


# ---------------------------------------------------------------- sync

def test_create_posts_event_and_stores_id(connected, temp_db):
    user_id, trip_id = connected
    client, session = google_with(FakeResponse(200, {"id": "evt-1"}))

    payload, status = calendar_sync_handler(user_id, {"tripId": trip_id, "action": "create"}, client=client)

    assert status == 200
    assert payload == {"success": True, "eventId": "evt-1", "message": "Trip added to Google Calendar"}
    call = session.calls[0]
    assert (call.method, call.url) == ("POST", EVENTS_URL)
    assert call.headers["Authorization"] == "Bearer live-token"
    assert call.json["end"]["date"] == "2026-05-04"
    assert temp_db.get_trip(user_id, trip_id)["google_calendar_event_id"] == "evt-1"


def test_update_patches_existing_event(connected, temp_db):
    user_id, trip_id = connected
    temp_db.set_trip_calendar_event(user_id, trip_id, "evt-1")
    client, session = google_with(FakeResponse(200, {"id": "evt-1"}))

    payload, status = calendar_sync_handler(user_id, {"tripId": trip_id, "action": "update"}, client=client)

    assert status == 200
    assert payload["message"] == "Trip updated in Google Calendar"
    assert (session.calls[0].method, session.calls[0].url) == ("PATCH", f"{EVENTS_URL}/evt-1")


def test_delete_tolerates_missing_event_and_clears_id(connected, temp_db):
    user_id, trip_id = connected
    temp_db.set_trip_calendar_event(user_id, trip_id, "evt-1")
    client, session = google_with(FakeResponse(404, text="gone"))

    payload, status = calendar_sync_handler(user_id, {"tripId": trip_id, "action": "delete"}, client=client)

    assert status == 200
    assert payload["message"] == "Trip removed from Google Calendar"
    assert session.calls[0].method == "DELETE"
    assert temp_db.get_trip(user_id, trip_id)["google_calendar_event_id"] is None


def test_expired_token_is_refreshed_then_reread(connected, temp_db):
    user_id, trip_id = connected
    temp_db.update_profile(user_id, {"google_token_expires_at": "2020-01-01T00:00:00+00:00"})
    client, session = google_with(
        FakeResponse(200, {"access_token": "fresh-token", "expires_in": 3600}),
        FakeResponse(200, {"id": "evt-9"}),
    )

    payload, status = calendar_sync_handler(user_id, {"tripId": trip_id, "action": "create"}, client=client)

    assert status == 200
    assert session.calls[0].url == TOKEN_URL
    assert session.calls[1].headers["Authorization"] == "Bearer fresh-token"


def test_failed_refresh_aborts_sync(connected, temp_db):
    user_id, trip_id = connected
    temp_db.update_profile(user_id, {"google_token_expires_at": "2020-01-01T00:00:00+00:00"})
    client, session = google_with(FakeResponse(400, {"error": "invalid_grant"}))

    payload, status = calendar_sync_handler(user_id, {"tripId": trip_id, "action": "create"}, client=client)

    assert status == 500
    assert payload == {"error": "Failed to refresh token"}
    assert len(session.calls) == 1


def test_sync_requires_connected_calendar(temp_db, user_id):
    client, session = google_with()
    trip_id = temp_db.create_trip(user_id, dict(TRIP))
    payload, status = calendar_sync_handler(user_id, {"tripId": trip_id, "action": "create"}, client=client)
    assert status == 400
    assert payload == {"error": "Google Calendar not connected"}
    assert session.calls == []


def test_sync_unknown_trip_is_not_found(connected):
    user_id, _ = connected
    client, _ = google_with()
    payload, status = calendar_sync_handler(
        user_id, {"tripId": "00000000-0000-0000-0000-000000000000", "action": "create"}, client=client
    )
    assert status == 404


def test_sync_rejects_unknown_action(connected):
    user_id, trip_id = connected
    client, _ = google_with()
    payload, status = calendar_sync_handler(user_id, {"tripId": trip_id, "action": "sync_all"}, client=client)
    assert status == 400
    assert payload == {"error": "Invalid action"}
