"""Google OAuth and Calendar REST calls for syncing trips as all-day events."""

from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, Optional
from urllib.parse import quote, urlencode

import requests

import config
from agents.common.errors import UpstreamError, ValidationError

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
EVENTS_URL = "https://www.googleapis.com/calendar/v3/calendars/primary/events"
CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar"


def callback_url(origin: str) -> str:
    return f"{origin.rstrip('/')}/oauth/callback"


def expires_at_iso(expires_in: Any, now: Optional[datetime] = None) -> str:
    """Turn a token lifetime in seconds into an absolute UTC timestamp."""
    now = now or datetime.now(timezone.utc)
    return (now + timedelta(seconds=int(expires_in or 0))).isoformat()


def _exclusive_end(ending_date: str) -> str:
    # All-day events end on the day after the last day
    return (date.fromisoformat(ending_date) + timedelta(days=1)).isoformat()


def _join(*parts: Optional[str]) -> str:
    return " ".join(p for p in parts if p)


def build_event_description(trip: Dict[str, Any]) -> str:
    """Plain-text event body: client, flights, hotel, car rental and notes."""
    lines = [trip.get("trip_name") or ""]

    if trip.get("client_or_event"):
        lines += ["", f"Client/Event: {trip['client_or_event']}"]

    outbound = _join(trip.get("airline"), trip.get("flight_number"))
    inbound = _join(trip.get("return_airline"), trip.get("return_flight_number"))
    if trip.get("flight_needed") and (outbound or inbound):
        lines += ["", "Flight Details:"]
        if outbound:
            line = f"- Outbound: {outbound}"
            if trip.get("departure_time"):
                line += f" departing {trip['departure_time']}"
            lines.append(line)
        if inbound:
            line = f"- Return: {inbound}"
            if trip.get("return_departure_time"):
                line += f" departing {trip['return_departure_time']}"
            lines.append(line)
        confirmation = trip.get("flight_confirmation") or trip.get("return_flight_confirmation")
        if confirmation:
            lines.append(f"- Confirmation: {confirmation}")

    if trip.get("hotel_needed") and trip.get("hotel_name"):
        lines += ["", "Hotel:", f"- {trip['hotel_name']}"]
        for label, key in (("Check-in", "hotel_checkin_date"),
                           ("Check-out", "hotel_checkout_date"),
                           ("Confirmation", "hotel_confirmation")):
            if trip.get(key):
                lines.append(f"- {label}: {trip[key]}")

    if trip.get("car_needed") and trip.get("car_rental_company"):
        lines += ["", "Car Rental:", f"- {trip['car_rental_company']}"]
        for label, key in (("Pickup", "car_pickup_datetime"),
                           ("Dropoff", "car_dropoff_datetime"),
                           ("Confirmation", "car_confirmation")):
            if trip.get(key):
                lines.append(f"- {label}: {trip[key]}")

    if trip.get("internal_notes"):
        lines += ["", f"Notes: {trip['internal_notes']}"]

    return "\n".join(lines)


def build_event(trip: Dict[str, Any]) -> Dict[str, Any]:
    """Calendar event body for a trip row."""
    if not trip.get("beginning_date") or not trip.get("ending_date"):
        raise ValidationError("Trip needs beginning and ending dates to sync")

    city, country = trip.get("city"), trip.get("country")
    location = f"{city}, {country}" if city and country else city or ""

    return {
        "summary": trip.get("trip_name"),
        "description": build_event_description(trip),
        "start": {"date": trip["beginning_date"], "timeZone": "UTC"},
        "end": {"date": _exclusive_end(trip["ending_date"]), "timeZone": "UTC"},
        "location": location,
    }


class GoogleCalendarClient:
    """OAuth token calls plus event create/update/delete on the primary calendar."""

    def __init__(self, client_id: Optional[str] = None, client_secret: Optional[str] = None,
                 session=None):
        self.client_id = client_id or config.GOOGLE_CLIENT_ID
        self.client_secret = client_secret or config.GOOGLE_CLIENT_SECRET
        self.session = session or requests.Session()

    def auth_url(self, origin: str) -> str:
        if not self.client_id:
            raise ValueError("Google client id required. Set GOOGLE_CLIENT_ID env var.")
        params = {
            "client_id": self.client_id,
            "redirect_uri": callback_url(origin),
            "response_type": "code",
            "scope": CALENDAR_SCOPE,
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{AUTH_URL}?{urlencode(params)}"

    def _token_request(self, form: Dict[str, str], failure: str) -> Dict[str, Any]:
        form = dict(form, client_id=self.client_id, client_secret=self.client_secret)
        try:
            response = self.session.post(TOKEN_URL, data=form, timeout=config.HTTP_TIMEOUT)
        except requests.RequestException as e:
            raise UpstreamError(f"{failure}: {e}")
        if not response.ok:
            print(f"[GCAL] Token request failed: {response.status_code} {response.text[:200]}")
            raise UpstreamError(failure, upstream_status=response.status_code, status=500)
        return response.json()

    def exchange_code(self, code: str, origin: str) -> Dict[str, Any]:
        """Trade an authorization code for {access_token, refresh_token, expires_in}."""
        return self._token_request({
            "code": code,
            "redirect_uri": callback_url(origin),
            "grant_type": "authorization_code",
        }, "Failed to exchange authorization code")

    def refresh(self, refresh_token: str) -> Dict[str, Any]:
        return self._token_request({
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }, "Failed to refresh token")

    def _event_call(self, method: str, url: str, access_token: str,
                    body: Optional[Dict[str, Any]] = None):
        try:
            return self.session.request(
                method, url,
                headers={"Authorization": f"Bearer {access_token}"},
                json=body,
                timeout=config.HTTP_TIMEOUT,
            )
        except requests.RequestException as e:
            raise UpstreamError(f"Google Calendar request failed: {e}")

    def save_event(self, access_token: str, event: Dict[str, Any],
                   event_id: Optional[str] = None) -> Dict[str, Any]:
        """Create the event, or patch it in place when ``event_id`` is known."""
        if event_id:
            response = self._event_call("PATCH", f"{EVENTS_URL}/{quote(event_id)}", access_token, event)
        else:
            response = self._event_call("POST", EVENTS_URL, access_token, event)
        if not response.ok:
            print(f"[GCAL] Calendar API error: {response.text[:200]}")
            raise UpstreamError("Failed to sync with Google Calendar",
                                upstream_status=response.status_code, status=500)
        return response.json()

    def delete_event(self, access_token: str, event_id: str) -> None:
        """Delete an event. An already-deleted event (404) is fine."""
        response = self._event_call("DELETE", f"{EVENTS_URL}/{quote(event_id)}", access_token)
        if not response.ok and response.status_code != 404:
            print(f"[GCAL] Calendar API delete error: {response.text[:200]}")
            raise UpstreamError("Failed to delete from Google Calendar",
                                upstream_status=response.status_code, status=500)
