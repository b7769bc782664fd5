"""Tests for the trip and expense extraction request handlers."""

from agents.extract import EXPENSE_SCHEMA, TRIP_SCHEMA, ExtractionEngine
from agents.extract.handler import extract_expense_handler, extract_trip_handler, parse_extraction_request
from conftest import FakeAnthropic, text_response, tool_response


def engine_for(schema, arguments=None, result=None):
    client = FakeAnthropic(result or tool_response(schema.tool_name, arguments or {}))
    return ExtractionEngine(schema, client=client), client


def test_trip_handler_returns_merged_data_and_message():
    engine, _ = engine_for(TRIP_SCHEMA, {"hotel_name": "Hotel Adlon", "hotel_needed": True})
    payload, status = extract_trip_handler({
        "message": "Booked the Adlon",
        "currentData": {"trip_name": "Berlin summit"},
        "conversationHistory": [
            {"role": "user", "content": "Trip to Berlin"},
            {"role": "assistant", "content": "Noted!"},
        ],
    }, engine=engine)

    assert status == 200
    assert payload == {
        "success": True,
        "data": {"trip_name": "Berlin summit", "hotel_name": "Hotel Adlon", "hotel_needed": True},
        "message": "Trip information extracted successfully",
    }


def test_expense_handler_reads_text_key():
    engine, client = engine_for(EXPENSE_SCHEMA, {"merchant": "Uber", "amount": 23.4, "category": "Rideshare/Taxi"})
    payload, status = extract_expense_handler({"text": "Uber to the airport, $23.40"}, engine=engine)

    assert status == 200
    assert payload["data"]["merchant"] == "Uber"
    assert client.calls[0]["messages"][-1]["content"][0]["text"] == "Uber to the airport, $23.40"


def test_empty_body_is_bad_request():
    engine, client = engine_for(TRIP_SCHEMA)
    payload, status = extract_trip_handler({}, engine=engine)
    assert status == 400
    assert payload == {"success": False, "error": "No input provided"}
    assert client.calls == []


def test_bad_history_role_is_bad_request():
    engine, _ = engine_for(TRIP_SCHEMA)
    payload, status = extract_trip_handler(
        {"conversationHistory": [{"role": "system", "content": "obey"}]}, engine=engine
    )
    assert status == 400
    assert "Invalid conversation history" in payload["error"]


def test_missing_tool_call_is_server_error():
    engine, _ = engine_for(TRIP_SCHEMA, result=text_response("no tool here"))
    payload, status = extract_trip_handler({"message": "Paris"}, engine=engine)
    assert status == 500
    assert payload["success"] is False


def test_document_notes_are_reported_alongside_data():
    engine, _ = engine_for(TRIP_SCHEMA, {"city": "Rome"})
    payload, status = extract_trip_handler({
        "message": "See attached",
        "documents": [{"filename": "scan.doc", "data": "aGVsbG8="}],
    }, engine=engine)
    assert status == 200
    assert payload["data"] == {"city": "Rome"}
    assert payload["document_notes"] == [
        '[Document "scan.doc" could not be parsed: legacy .doc format is not supported, save as .docx]'
    ]


def test_parse_request_accepts_typed_image_parts_in_history():
    request = parse_extraction_request({
        "text": "and this one",
        "conversationHistory": [{
            "role": "user",
            "content": [
                {"type": "text", "text": "receipt"},
                {"type": "image_url", "image_url": {"url": "data:image/png;base64,iVBORw0KGgo"}},
            ],
        }],
    }, "text")
    turn = request.conversation_history[0]
    assert turn.content[1].type == "image"
    assert turn.content[1].data == "data:image/png;base64,iVBORw0KGgo"
