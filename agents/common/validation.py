"""Field validation for trip, expense and itinerary rows before they are stored."""

import math
import re
import uuid
from datetime import date
from typing import Any, Dict, Iterable

from agents.common.errors import ValidationError
from agents.extract.schemas import EXPENSE_CATEGORIES, PAYMENT_METHODS

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_RE = re.compile(r"^\d{2}:\d{2}$")
URL_RE = re.compile(r"^https?://\S+$")

ITINERARY_ITEM_TYPES = [
    "Buffer", "Class", "Event", "Flight", "Lodging", "Meeting", "Other", "Transit",
]

# Max lengths for free-text trip columns
TRIP_TEXT_LIMITS = {
    "trip_name": 200,
    "city": 100,
    "country": 100,
    "client_or_event": 200,
    "internal_notes": 5000,
    "airline": 100,
    "flight_number": 50,
    "flight_confirmation": 100,
    "return_airline": 100,
    "return_flight_number": 50,
    "return_flight_confirmation": 100,
    "hotel_name": 200,
    "hotel_address": 500,
    "hotel_booking_service": 100,
    "hotel_confirmation": 100,
    "car_rental_company": 100,
    "car_pickup_location": 200,
    "car_dropoff_location": 200,
    "car_booking_service": 100,
    "car_confirmation": 100,
    "invoice_number": 100,
}


def _clean_text(data: Dict[str, Any], limits: Dict[str, int]) -> Dict[str, Any]:
    cleaned = {}
    for field, limit in limits.items():
        if field not in data or data[field] is None:
            continue
        value = str(data[field]).strip()
        if len(value) > limit:
            label = field.replace("_", " ").capitalize()
            raise ValidationError(f"{label} must be less than {limit} characters")
        cleaned[field] = value
    return cleaned


def _require(data: Dict[str, Any], fields: Iterable[str]) -> None:
    for field in fields:
        value = data.get(field)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise ValidationError(f"{field.replace('_', ' ').capitalize()} is required")


def _check_date(data: Dict[str, Any], field: str) -> None:
    value = data.get(field)
    if not value:
        return
    if not DATE_RE.match(str(value)):
        raise ValidationError(f"Invalid date format for {field}")
    try:
        date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"Invalid date for {field}")


def _check_amount(value: Any, label: str, minimum: float, too_small: str) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{label} must be a number")
    if not math.isfinite(amount):
        raise ValidationError(f"{label} must be a number")
    if amount < minimum:
        raise ValidationError(too_small)
    if amount >= 1000000:
        raise ValidationError(f"{label} must be less than 1,000,000")
    return amount


def validate_trip(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """Validate a trip row. ``partial`` skips the required-field checks for updates."""
    if not partial:
        _require(data, ("trip_name", "beginning_date", "ending_date"))
    cleaned = dict(data)
    cleaned.update(_clean_text(data, TRIP_TEXT_LIMITS))
    for field in ("beginning_date", "ending_date", "hotel_checkin_date", "hotel_checkout_date"):
        _check_date(cleaned, field)
    if cleaned.get("fee") is not None:
        cleaned["fee"] = _check_amount(cleaned["fee"], "Fee", 0, "Fee must be positive")
    begin, end = cleaned.get("beginning_date"), cleaned.get("ending_date")
    if begin and end and end < begin:
        raise ValidationError("Ending date must be on or after the beginning date")
    return cleaned


def validate_expense(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    if not partial:
        _require(data, ("trip_id", "date", "merchant", "category", "amount"))
    cleaned = dict(data)
    cleaned.update(_clean_text(data, {"merchant": 200, "description": 1000, "notes": 2000}))
    if cleaned.get("trip_id") is not None:
        try:
            uuid.UUID(str(cleaned["trip_id"]))
        except ValueError:
            raise ValidationError("Invalid trip ID")
    _check_date(cleaned, "date")
    if cleaned.get("category") is not None and cleaned["category"] not in EXPENSE_CATEGORIES:
        raise ValidationError(f"Category must be one of: {', '.join(EXPENSE_CATEGORIES)}")
    if cleaned.get("payment_method") is not None and cleaned["payment_method"] not in PAYMENT_METHODS:
        raise ValidationError(f"Payment method must be one of: {', '.join(PAYMENT_METHODS)}")
    if cleaned.get("amount") is not None:
        cleaned["amount"] = _check_amount(cleaned["amount"], "Amount", 0.01, "Amount must be greater than 0")
    if cleaned.get("currency") is not None:
        currency = str(cleaned["currency"]).strip().upper()
        if len(currency) != 3:
            raise ValidationError("Currency must be 3 characters")
        cleaned["currency"] = currency
    return cleaned


def validate_itinerary_item(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    if not partial:
        _require(data, ("trip_id", "date", "item_type", "title"))
    cleaned = dict(data)
    cleaned.update(_clean_text(data, {
        "title": 200,
        "description": 2000,
        "location_name": 200,
        "address": 500,
        "confirmation_number": 100,
        "booking_link": 2000,
        "notes": 2000,
    }))
    _check_date(cleaned, "date")
    for field in ("start_time", "end_time"):
        value = cleaned.get(field)
        if value and not TIME_RE.match(str(value)):
            raise ValidationError(f"Invalid time format for {field}")
    if cleaned.get("item_type") is not None and cleaned["item_type"] not in ITINERARY_ITEM_TYPES:
        raise ValidationError(f"Item type must be one of: {', '.join(ITINERARY_ITEM_TYPES)}")
    if cleaned.get("booking_link") and not URL_RE.match(cleaned["booking_link"]):
        raise ValidationError("Invalid URL")
    return cleaned


# Profile columns a user may edit themselves
PROFILE_TEXT_LIMITS = {
    "full_name": 100,
    "company_name": 200,
}


def validate_profile(data: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only the user-editable profile fields. Blank values clear the field."""
    cleaned = _clean_text(data, PROFILE_TEXT_LIMITS)
    for field in PROFILE_TEXT_LIMITS:
        if field in data and data[field] is None:
            cleaned[field] = None
        elif cleaned.get(field) == "":
            cleaned[field] = None
    if not cleaned:
        raise ValidationError("No profile fields to update")
    return cleaned
