"""Request handler for flight status lookups."""

from typing import Any, Dict, Optional

from agents.common.errors import ValidationError
from .status import FlightStatusClient


def flight_status_handler(data: Dict[str, Any], client: Optional[FlightStatusClient] = None):
    """Handle a flight status request: {flightNumber, flightDate}.

    Logical misses (unknown flight, upstream outage) come back with status
    200 and an ``error`` field so the page can fall back to manual entry.
    """
    client = client or FlightStatusClient()
    try:
        return client.lookup(data.get("flightNumber"), data.get("flightDate")), 200
    except ValidationError as e:
        return {"error": e.message}, e.status
    except Exception as e:
        print(f"[FLIGHT] Error fetching flight status: {e}")
        return {"error": "An error occurred while fetching flight status. Please try again."}, 500
