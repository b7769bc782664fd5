"""Request handlers for the trip and expense assistants."""

import traceback
from typing import Any, Dict, Optional, Tuple

from agents.common.errors import ValidationError, WaymarkError
from .engine import ExtractionEngine
from .models import ConversationTurn, Document, ExtractionRequest
from .schemas import EXPENSE_SCHEMA, TRIP_SCHEMA


def _optional_list(data: Dict[str, Any], key: str) -> list:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError(f"{key} must be an array")
    return value


def parse_extraction_request(data: Dict[str, Any], text_key: str) -> ExtractionRequest:
    """Build an ExtractionRequest from a JSON request body."""
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    text = data.get(text_key)
    if text is not None and not isinstance(text, str):
        raise ValidationError(f"{text_key} must be a string")

    documents = []
    for raw in _optional_list(data, "documents"):
        if not isinstance(raw, dict) or not raw.get("filename") or not isinstance(raw.get("data"), str):
            raise ValidationError("Each document needs a filename and base64 data")
        documents.append(Document(filename=str(raw["filename"]), data=raw["data"]))

    history = []
    for raw in _optional_list(data, "conversationHistory"):
        try:
            history.append(ConversationTurn.from_dict(raw))
        except (AttributeError, ValueError) as e:
            raise ValidationError(f"Invalid conversation history: {e}")

    current_state = data.get("currentData") or {}
    if not isinstance(current_state, dict):
        raise ValidationError("currentData must be an object")

    return ExtractionRequest(
        new_text=text,
        images=_optional_list(data, "images"),
        documents=documents,
        conversation_history=history,
        current_state=current_state,
    )


def _run(engine: ExtractionEngine, data: Dict[str, Any], text_key: str,
         success_message: Optional[str]) -> Tuple[Dict[str, Any], int]:
    try:
        request = parse_extraction_request(data, text_key)
        result = engine.extract(request)
    except WaymarkError as e:
        print(f"[EXTRACT] {e.__class__.__name__}: {e.message}")
        return e.to_dict(), e.status
    except Exception as e:
        print(f"[EXTRACT] Unexpected error: {e}")
        traceback.print_exc()
        return {"success": False, "error": f"Extraction failed: {str(e)}"}, 500

    payload = result.to_dict()
    if success_message:
        payload["message"] = success_message
    return payload, 200


def extract_trip_handler(data: Dict[str, Any], engine: Optional[ExtractionEngine] = None):
    """Extract trip fields from a message, images and documents.

    Body: {message?, images?, documents?, conversationHistory?, currentData?}
    """
    engine = engine or ExtractionEngine(TRIP_SCHEMA)
    return _run(engine, data, "message", "Trip information extracted successfully")


def extract_expense_handler(data: Dict[str, Any], engine: Optional[ExtractionEngine] = None):
    """Extract expense fields from a receipt description and/or images.

    Body: {text?, images?, conversationHistory?, currentData?}
    """
    engine = engine or ExtractionEngine(EXPENSE_SCHEMA)
    return _run(engine, data, "text", None)
