"""Calendar Agent - Google Calendar connection and trip event sync."""

from .google import GoogleCalendarClient, build_event, build_event_description
from .handler import calendar_oauth_handler, calendar_sync_handler, refresh_token_handler

__all__ = [
    "GoogleCalendarClient",
    "build_event",
    "build_event_description",
    "calendar_oauth_handler",
    "calendar_sync_handler",
    "refresh_token_handler",
]
