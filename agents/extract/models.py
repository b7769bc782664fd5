"""Data models for the extraction assistants."""

from dataclasses import dataclass, field
from typing import Any, Optional, Union

# Scalar field values the model may produce for a trip or expense
FieldValue = Union[str, int, float, bool, None]
ExtractionState = dict  # field name -> FieldValue

USER = "user"
ASSISTANT = "assistant"


@dataclass(frozen=True)
class ContentPart:
    """One typed part of a turn: either text or an encoded image."""

    type: str  # "text" | "image"
    text: Optional[str] = None
    data: Optional[str] = None  # data URL or bare base64 for images

    @classmethod
    def from_dict(cls, raw: dict) -> "ContentPart":
        part_type = raw.get("type")
        if part_type == "text":
            return cls(type="text", text=raw.get("text") or "")
        if part_type in ("image", "image_url"):
            data = raw.get("data")
            if data is None and isinstance(raw.get("image_url"), dict):
                data = raw["image_url"].get("url")
            return cls(type="image", data=data)
        raise ValueError(f"Unknown content part type: {part_type!r}")


@dataclass(frozen=True)
class ConversationTurn:
    """A single user or assistant turn. Content is a string or a tuple of parts."""

    role: str
    content: Union[str, tuple]

    @classmethod
    def from_dict(cls, raw: dict) -> "ConversationTurn":
        role = raw.get("role", USER)
        if role not in (USER, ASSISTANT):
            raise ValueError(f"Invalid role: {role!r}")
        content = raw.get("content", "")
        if isinstance(content, list):
            content = tuple(ContentPart.from_dict(p) for p in content)
        elif not isinstance(content, str):
            raise ValueError("Turn content must be a string or a list of parts")
        return cls(role=role, content=content)


@dataclass(frozen=True)
class Document:
    """An uploaded document. ``data`` is base64, optionally as a data URL."""

    filename: str
    data: str


@dataclass
class ExtractionRequest:
    new_text: Optional[str] = None
    images: list = field(default_factory=list)
    documents: list = field(default_factory=list)
    conversation_history: list = field(default_factory=list)
    current_state: dict = field(default_factory=dict)

    @property
    def has_input(self) -> bool:
        return bool(self.new_text or self.images or self.documents or self.conversation_history)


@dataclass
class ExtractionResult:
    success: bool
    data: Optional[dict] = None
    error: Optional[str] = None
    document_notes: list = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success}
        if self.data is not None:
            result["data"] = self.data
        if self.error is not None:
            result["error"] = self.error
        if self.document_notes:
            result["document_notes"] = self.document_notes
        return result
