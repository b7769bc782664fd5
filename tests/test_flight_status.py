"""Tests for AeroDataBox flight status lookups."""

import pytest
import requests

from agents.common.errors import ValidationError
from agents.flights import FlightStatusClient, flight_status_handler, reshape_flight, strip_utc_offset
from agents.flights.status import validate_flight_query
from conftest import FakeResponse, FakeSession

SAMPLE_FLIGHT = {
    "number": "LH 2416",
    "status": "Arrived",
    "airline": {"name": "Lufthansa"},
    "aircraft": {"model": "Airbus A321"},
    "departure": {
        "airport": {"name": "Munich", "iata": "MUC"},
        "terminal": "2",
        "gate": "K12",
        "scheduledTime": {"utc": "2026-05-01 10:10Z", "local": "2026-05-01 12:10+02:00"},
        "revisedTime": {"local": "2026-05-01 12:25+02:00"},
    },
    "arrival": {
        "airport": {"name": "Stockholm-Arlanda", "iata": "ARN"},
        "scheduledTime": {"utc": "2026-05-01 12:25Z"},
        "actualTime": {"utc": "2026-05-01 12:40Z"},
        "delay": 15,
    },
}


def client_with(*responses):
    session = FakeSession(*responses)
    return FlightStatusClient(api_key="test-key", session=session, base_url="https://adb.test"), session


@pytest.mark.parametrize("value,expected", [
    ("2026-05-01 12:10+02:00", "2026-05-01 12:10"),
    ("2026-05-01 12:10-0500", "2026-05-01 12:10"),
    ("2026-05-01 10:10Z", "2026-05-01 10:10"),
    ("2026-05-01 10:10", "2026-05-01 10:10"),
    (None, None),
])
def test_strip_utc_offset_keeps_wall_clock_time(value, expected):
    assert strip_utc_offset(value) == expected


def test_validate_flight_query_normalizes_number():
    assert validate_flight_query(" ua 900 ", "2026-05-01") == ("UA900", "2026-05-01")


@pytest.mark.parametrize("number,flight_date", [
    (None, "2026-05-01"),
    ("UA900", None),
    ("U", "2026-05-01"),
    ("UA900", "05/01/2026"),
    ("UA900", "2026-02-30"),
])
def test_validate_flight_query_rejects_bad_input(number, flight_date):
    with pytest.raises(ValidationError):
        validate_flight_query(number, flight_date)


def test_reshape_prefers_local_time_and_derives_delay():
    record = reshape_flight(SAMPLE_FLIGHT, "LH2416")

    assert record["flightNumber"] == "LH 2416"
    assert record["airline"] == "Lufthansa"
    assert record["aircraft"] == {"type": "Airbus A321"}
    departure = record["departure"]
    assert departure["scheduledTime"] == "2026-05-01 12:10"
    assert departure["estimatedTime"] == "2026-05-01 12:25"
    assert departure["delay"] == 15
    assert departure["gate"] == "K12"
    arrival = record["arrival"]
    assert arrival["scheduledTime"] == "2026-05-01 12:25"
    assert arrival["actualTime"] == "2026-05-01 12:40"
    assert arrival["delay"] == 15
    assert arrival["terminal"] is None


def test_lookup_calls_number_endpoint_with_api_key():
    client, session = client_with(FakeResponse(200, [SAMPLE_FLIGHT]))
    record = client.lookup("lh2416", "2026-05-01")

    assert record["status"] == "Arrived"
    call = session.calls[0]
    assert call.url == "https://adb.test/flights/number/LH2416/2026-05-01"
    assert call.headers["x-api-key"] == "test-key"


@pytest.mark.parametrize("response", [
    FakeResponse(404, text="not found"),
    FakeResponse(204),
    FakeResponse(200, []),
])
def test_unknown_flight_is_reported_not_raised(response):
    client, _ = client_with(response)
    payload, status = flight_status_handler({"flightNumber": "ZZ9999", "flightDate": "2026-05-01"}, client=client)
    assert status == 200
    assert payload["error"] == "No flight found"
    assert "manually" in payload["message"]


def test_upstream_failure_is_reported_not_raised():
    client, _ = client_with(requests.ConnectionError("down"))
    payload, status = flight_status_handler({"flightNumber": "UA900", "flightDate": "2026-05-01"}, client=client)
    assert status == 200
    assert payload["error"] == "Failed to fetch flight data"


def test_bad_input_is_bad_request():
    client, session = client_with()
    payload, status = flight_status_handler({"flightNumber": "UA900", "flightDate": "tomorrow"}, client=client)
    assert status == 400
    assert "YYYY-MM-DD" in payload["error"]
    assert session.calls == []
