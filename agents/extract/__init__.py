"""Extraction Agent - Turn receipts, booking text and documents into trip and expense fields."""

from .engine import ExtractionEngine, merge_state
from .handler import extract_expense_handler, extract_trip_handler
from .models import ConversationTurn, Document, ExtractionRequest, ExtractionResult
from .schemas import EXPENSE_SCHEMA, TRIP_SCHEMA

__all__ = [
    "ExtractionEngine",
    "merge_state",
    "extract_trip_handler",
    "extract_expense_handler",
    "ConversationTurn",
    "Document",
    "ExtractionRequest",
    "ExtractionResult",
    "TRIP_SCHEMA",
    "EXPENSE_SCHEMA",
]
