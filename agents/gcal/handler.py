"""Request handlers for Google Calendar connection and trip sync."""

import traceback
from typing import Any, Dict, Optional

import database as db
from agents.common.errors import UpstreamError, ValidationError, WaymarkError
from .google import GoogleCalendarClient, build_event, expires_at_iso

SYNC_ACTIONS = ("create", "update", "delete")


def _error(e: WaymarkError):
    return {"error": e.message}, e.status


def calendar_oauth_handler(user_id: int, data: Dict[str, Any], origin: str,
                           client: Optional[GoogleCalendarClient] = None):
    """Either hand out the consent URL or finish the code exchange.

    Body: {action: "get_auth_url"} or {code}.
    """
    client = client or GoogleCalendarClient()
    try:
        if data.get("action") == "get_auth_url":
            print(f"[GCAL] Generating auth URL, callback {origin}/oauth/callback")
            return {"authUrl": client.auth_url(origin)}, 200

        code = data.get("code")
        if not code:
            return {"error": "Authorization code required"}, 400

        tokens = client.exchange_code(code, origin)
        db.update_profile(user_id, {
            "google_access_token": tokens["access_token"],
            "google_token_expires_at": expires_at_iso(tokens.get("expires_in")),
            "google_calendar_connected": True,
        })
        if tokens.get("refresh_token"):
            db.store_refresh_token(user_id, tokens["refresh_token"])
        print(f"[GCAL] Calendar connected for user {user_id}")
        return {"success": True, "message": "Google Calendar connected successfully"}, 200
    except WaymarkError as e:
        return _error(e)
    except Exception as e:
        print(f"[GCAL] Unexpected error: {e}")
        traceback.print_exc()
        return {"error": str(e)}, 500


def refresh_access_token(user_id: int, client: GoogleCalendarClient) -> Dict[str, str]:
    """Swap the stored refresh token for a new access token and save it."""
    refresh_token = db.get_refresh_token(user_id)
    if not refresh_token:
        raise ValidationError("No refresh token found")

    tokens = client.refresh(refresh_token)
    expires_at = expires_at_iso(tokens.get("expires_in"))
    db.update_profile(user_id, {
        "google_access_token": tokens["access_token"],
        "google_token_expires_at": expires_at,
    })
    # Google may rotate the refresh token
    if tokens.get("refresh_token"):
        db.store_refresh_token(user_id, tokens["refresh_token"])
    return {"access_token": tokens["access_token"], "expires_at": expires_at}


def refresh_token_handler(user_id: int, client: Optional[GoogleCalendarClient] = None):
    client = client or GoogleCalendarClient()
    try:
        return refresh_access_token(user_id, client), 200
    except WaymarkError as e:
        return _error(e)
    except Exception as e:
        print(f"[GCAL] Token refresh error: {e}")
        return {"error": str(e)}, 500


def calendar_sync_handler(user_id: int, data: Dict[str, Any],
                          client: Optional[GoogleCalendarClient] = None):
    """Create, update or delete the calendar event for one trip.

    Body: {tripId, action}. The access token is refreshed first when it has
    expired, then re-read from the profile before calling the Calendar API.
    """
    client = client or GoogleCalendarClient()
    trip_id = data.get("tripId")
    action = data.get("action")

    try:
        if action not in SYNC_ACTIONS:
            return {"error": "Invalid action"}, 400
        if not trip_id:
            return {"error": "Trip ID required"}, 400

        profile = db.get_profile(user_id)
        if not profile or not profile.get("google_calendar_connected"):
            return {"error": "Google Calendar not connected"}, 400

        if db.token_expired(profile.get("google_token_expires_at")):
            print(f"[GCAL] Access token expired for user {user_id}, refreshing")
            try:
                refresh_access_token(user_id, client)
            except WaymarkError as e:
                print(f"[GCAL] Refresh failed: {e.message}")
                return {"error": "Failed to refresh token"}, 500

        access_token = (db.get_profile(user_id) or {}).get("google_access_token")

        trip = db.get_trip(user_id, trip_id)
        if not trip:
            return {"error": "Trip not found"}, 404

        event_id = trip.get("google_calendar_event_id")

        if action == "delete":
            if not event_id:
                return {"success": True, "message": "Trip is not on Google Calendar"}, 200
            client.delete_event(access_token, event_id)
            db.set_trip_calendar_event(user_id, trip_id, None)
            print(f"[GCAL] Removed event {event_id} for trip {trip_id}")
            return {"success": True, "message": "Trip removed from Google Calendar"}, 200

        event = build_event(trip)
        saved = client.save_event(access_token, event, event_id if action == "update" else None)
        if not event_id:
            db.set_trip_calendar_event(user_id, trip_id, saved.get("id"))
        print(f"[GCAL] Synced trip {trip_id} to event {saved.get('id')} ({action})")

        message = "Trip added to Google Calendar" if action == "create" else "Trip updated in Google Calendar"
        return {"success": True, "eventId": saved.get("id"), "message": message}, 200
    except UpstreamError as e:
        return {"error": e.message, "details": e.upstream_status}, e.status
    except WaymarkError as e:
        return _error(e)
    except Exception as e:
        print(f"[GCAL] Calendar sync error: {e}")
        traceback.print_exc()
        return {"error": str(e)}, 500
