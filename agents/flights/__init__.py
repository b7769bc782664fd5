"""Flight Agent - Live flight status lookups."""

from .handler import flight_status_handler
from .status import FlightStatusClient, reshape_flight, strip_utc_offset

__all__ = [
    "flight_status_handler",
    "FlightStatusClient",
    "reshape_flight",
    "strip_utc_offset",
]
