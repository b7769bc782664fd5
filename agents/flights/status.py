"""Flight status lookups against the AeroDataBox API."""

import re
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

import config
from agents.common.errors import ValidationError

FLIGHT_NUMBER_RE = re.compile(r"^[A-Z0-9]{2,3}\d{1,4}$", re.IGNORECASE)
DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Trailing "Z", "+02:00", "-0500" style offsets
UTC_OFFSET_RE = re.compile(r"\s*(?:Z|[+-]\d{2}:?\d{2})$")

NOT_FOUND_MESSAGE = (
    "Flight number not found for the given date. Try entering the flight information manually."
)
UNAVAILABLE_MESSAGE = (
    "Unable to connect to flight data service. Please try again later or enter flight details manually."
)


def validate_flight_query(flight_number: Optional[str], flight_date: Optional[str]) -> tuple:
    """Normalize and validate a flight number/date pair. Raises ValidationError."""
    if not flight_number:
        raise ValidationError("Flight number is required")
    if not flight_date:
        raise ValidationError("Flight date is required")

    flight_number = re.sub(r"\s+", "", str(flight_number)).upper()
    flight_date = str(flight_date).strip()

    if not FLIGHT_NUMBER_RE.match(flight_number):
        raise ValidationError("Invalid flight number format. Expected format: AA123 or UAL1234")
    if not DATE_RE.match(flight_date):
        raise ValidationError("Invalid date format. Expected format: YYYY-MM-DD")
    try:
        datetime.strptime(flight_date, "%Y-%m-%d")
    except ValueError:
        raise ValidationError("Invalid date format. Expected format: YYYY-MM-DD")
    return flight_number, flight_date


def strip_utc_offset(value: Optional[str]) -> Optional[str]:
    """Drop the UTC offset from a timestamp, keeping the wall-clock time as written.

    "2025-03-20 11:36+02:00" -> "2025-03-20 11:36". No conversion happens.
    """
    if not value:
        return None
    return UTC_OFFSET_RE.sub("", value.strip())


def _pick_time(block: Optional[Dict[str, Any]]) -> Optional[str]:
    if not block:
        return None
    return strip_utc_offset(block.get("local") or block.get("utc"))


def _minutes_between(scheduled: Optional[str], later: Optional[str]) -> Optional[int]:
    if not scheduled or not later:
        return None
    try:
        start = datetime.fromisoformat(scheduled.replace(" ", "T"))
        end = datetime.fromisoformat(later.replace(" ", "T"))
    except ValueError:
        return None
    return int((end - start).total_seconds() // 60)


def reshape_leg(leg: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Map one AeroDataBox departure/arrival block to our leg record."""
    leg = leg or {}
    airport = leg.get("airport") or {}
    scheduled = _pick_time(leg.get("scheduledTime"))
    estimated = _pick_time(leg.get("revisedTime"))
    actual = _pick_time(leg.get("actualTime"))

    delay = leg.get("delay")
    if delay is None:
        delay = _minutes_between(scheduled, actual or estimated)

    return {
        "airport": airport.get("name") or "Unknown",
        "iata": airport.get("iata") or "",
        "terminal": leg.get("terminal") or None,
        "gate": leg.get("gate") or None,
        "scheduledTime": scheduled,
        "estimatedTime": estimated,
        "actualTime": actual,
        "delay": delay,
    }


def reshape_flight(flight: Dict[str, Any], requested_number: str) -> Dict[str, Any]:
    return {
        "flightNumber": flight.get("number") or requested_number,
        "airline": (flight.get("airline") or {}).get("name") or "Unknown",
        "status": flight.get("status") or "unknown",
        "departure": reshape_leg(flight.get("departure")),
        "arrival": reshape_leg(flight.get("arrival")),
        "aircraft": {"type": (flight.get("aircraft") or {}).get("model")},
    }


class FlightStatusClient:
    """Thin AeroDataBox client. ``session`` can be any object with a requests-style ``get``."""

    def __init__(self, api_key: Optional[str] = None, session=None,
                 base_url: Optional[str] = None):
        self.api_key = api_key or config.AERODATABOX_API_KEY
        self.session = session or requests.Session()
        self.base_url = (base_url or config.AERODATABOX_BASE_URL).rstrip("/")

    def lookup(self, flight_number: str, flight_date: str) -> Dict[str, Any]:
        """Return a flight record, or ``{error, message}`` when nothing usable came back.

        Only bad input raises (ValidationError). Upstream misses and failures
        are reported in the payload so the caller can show a friendly fallback.
        """
        flight_number, flight_date = validate_flight_query(flight_number, flight_date)
        if not self.api_key:
            raise ValueError("AeroDataBox API key required. Set AERODATABOX_API_KEY env var.")

        url = f"{self.base_url}/flights/number/{quote(flight_number)}/{quote(flight_date)}"
        print(f"[FLIGHT] Fetching flight status for {flight_number} on {flight_date}")

        try:
            response = self.session.get(
                url,
                headers={"x-api-key": self.api_key, "Accept": "application/json"},
                timeout=config.HTTP_TIMEOUT,
            )
        except requests.RequestException as e:
            print(f"[FLIGHT] Request failed: {e}")
            return {"error": "Failed to fetch flight data", "message": UNAVAILABLE_MESSAGE}

        if response.status_code in (204, 404):
            return {"error": "No flight found", "message": NOT_FOUND_MESSAGE}
        if not response.ok:
            print(f"[FLIGHT] AeroDataBox error {response.status_code}: {response.text[:200]}")
            return {"error": "Failed to fetch flight data", "message": UNAVAILABLE_MESSAGE}

        try:
            data = response.json()
        except ValueError:
            return {"error": "Failed to fetch flight data", "message": UNAVAILABLE_MESSAGE}

        flights = data if isinstance(data, list) else [data] if data else []
        if not flights:
            return {
                "error": "No flight found",
                "message": "No flight data available for this flight number and date. "
                           "Try entering the flight information manually.",
            }
        return reshape_flight(flights[0], flight_number)
