"""Extract structured trip/expense fields with Claude and merge them into running state."""

from __future__ import annotations

import json
from datetime import date
from typing import Any, Optional

import anthropic

import config
from agents.common.errors import ExtractionError, UpstreamError, ValidationError
from .documents import extract_documents, payload_size
from .models import ASSISTANT, USER, ExtractionRequest, ExtractionResult
from .schemas import ExtractionSchema

SCALAR_TYPES = (str, int, float, bool, type(None))

# Leading bytes of the base64 encoding for the image formats Claude accepts
IMAGE_SIGNATURES = {
    "/9j/": "image/jpeg",
    "iVBORw0KGgo": "image/png",
    "R0lGOD": "image/gif",
    "UklGR": "image/webp",
}

SYSTEM_TEMPLATE = """{instructions}

Today's date is {today}.

Record your findings by calling the {tool_name} tool. Its fields are:
{fields}

Information already collected for this form (JSON):
{current_state}

Rules:
- Only include fields you have information for. Omit anything not mentioned.
- Fields you omit keep their current value, so do not repeat unchanged values unless the user corrected them.
- When the user or a new document states something explicitly, it replaces the value collected earlier.
- Use YYYY-MM-DD for dates and ISO 8601 (YYYY-MM-DDTHH:MM) for date-times, as local time without a UTC offset."""


def merge_state(current: dict, partial: dict) -> dict:
    """Overwrite ``current`` with every key present in ``partial``.

    Returns a new dict; neither argument is modified. Keys missing from
    ``partial`` keep their value, so merging the same partial twice gives the
    same result as merging it once.
    """
    merged = dict(current or {})
    merged.update(partial or {})
    return merged


def _image_block(data: str) -> dict:
    """Convert a data URL (or bare base64) image into an Anthropic image block."""
    media_type = None
    if data.startswith("data:") and "," in data:
        header, data = data.split(",", 1)
        media_type = header[len("data:"):].split(";")[0] or None
    if not media_type:
        media_type = next(
            (mt for prefix, mt in IMAGE_SIGNATURES.items() if data.startswith(prefix)),
            "image/jpeg",
        )
    return {
        "type": "image",
        "source": {"type": "base64", "media_type": media_type, "data": data},
    }


def _to_anthropic_content(content, role: str):
    """Map a turn's content onto Anthropic message content."""
    if isinstance(content, str):
        return content.strip()
    blocks = []
    for part in content:
        if part.type == "text":
            if part.text and part.text.strip():
                blocks.append({"type": "text", "text": part.text})
        elif part.type == "image" and part.data and role == USER:
            # Assistant turns cannot carry images
            blocks.append(_image_block(part.data))
    return blocks


class ExtractionEngine:
    """Turn free-form input plus accumulated state into updated structured state.

    One model call per ``extract``; the model is forced to answer through the
    schema's tool, and its arguments are merged into ``current_state`` key by key.
    """

    def __init__(self, schema: ExtractionSchema, client: Optional[Any] = None,
                 model: Optional[str] = None, max_history_turns: Optional[int] = None):
        self.schema = schema
        self._client = client
        self.model = model or config.MODEL
        self.max_history_turns = (
            max_history_turns if max_history_turns is not None else config.MAX_HISTORY_TURNS
        )

    @property
    def client(self):
        if self._client is None:
            if not config.ANTHROPIC_API_KEY:
                raise ValueError("Anthropic API key required. Set ANTHROPIC_API_KEY env var.")
            self._client = anthropic.Anthropic(
                api_key=config.ANTHROPIC_API_KEY, timeout=config.HTTP_TIMEOUT * 4
            )
        return self._client

    # ------------------------------------------------------------------ validation

    def validate(self, request: ExtractionRequest) -> None:
        """Reject bad input before anything is sent to the model."""
        if request.new_text is not None:
            request.new_text = request.new_text.strip()
            if len(request.new_text) > config.MAX_TEXT_LENGTH:
                raise ValidationError(
                    f"Message must be less than {config.MAX_TEXT_LENGTH} characters"
                )
        if len(request.images) > config.MAX_IMAGES:
            raise ValidationError(f"Maximum {config.MAX_IMAGES} images allowed")
        if len(request.documents) > config.MAX_DOCUMENTS:
            raise ValidationError(f"Maximum {config.MAX_DOCUMENTS} documents allowed")
        for image in request.images:
            if not isinstance(image, str) or not image:
                raise ValidationError("Images must be base64 encoded strings")
            if payload_size(image) > config.MAX_IMAGE_BYTES:
                raise ValidationError("Each image must be smaller than 5MB")
        for document in request.documents:
            if payload_size(document.data) > config.MAX_DOCUMENT_BYTES:
                raise ValidationError(f'Document "{document.filename}" is larger than 20MB')
        if not request.has_input:
            raise ValidationError("No input provided")

    # ------------------------------------------------------------------ prompt

    def build_system_prompt(self, current_state: dict, today: Optional[date] = None) -> str:
        return SYSTEM_TEMPLATE.format(
            instructions=self.schema.instructions,
            today=(today or date.today()).isoformat(),
            tool_name=self.schema.tool_name,
            fields=self.schema.describe_fields(),
            current_state=json.dumps(current_state or {}, indent=2, sort_keys=True),
        )

    def build_messages(self, request: ExtractionRequest) -> tuple[list, list]:
        """Assemble history, the new user turn and any document text.

        Returns the Anthropic message list and the per-document failure notes.
        """
        history = request.conversation_history[-self.max_history_turns:] if self.max_history_turns else []

        messages = []
        for turn in history:
            content = _to_anthropic_content(turn.content, turn.role)
            if content:
                messages.append({"role": turn.role, "content": content})

        # The API wants the conversation to open with a user turn
        while messages and messages[0]["role"] == ASSISTANT:
            messages.pop(0)

        if request.new_text or request.images:
            parts = []
            if request.new_text:
                parts.append({"type": "text", "text": request.new_text})
            elif not request.documents:
                parts.append({"type": "text", "text": "Please extract the information from these images."})
            parts.extend(_image_block(image) for image in request.images)
            messages.append({"role": USER, "content": parts})

        notes = []
        if request.documents:
            document_text, notes = extract_documents(request.documents)
            self._append_document_text(messages, document_text)

        if not messages or messages[-1]["role"] != USER:
            messages.append({
                "role": USER,
                "content": "Please update the extracted information based on our conversation so far.",
            })
        return messages, notes

    @staticmethod
    def _append_document_text(messages: list, document_text: str) -> None:
        text = f"Content of the uploaded documents:\n\n{document_text}"
        latest_user = next((m for m in reversed(messages) if m["role"] == USER), None)
        if latest_user is None or latest_user is not messages[-1]:
            messages.append({"role": USER, "content": [{"type": "text", "text": text}]})
        elif isinstance(latest_user["content"], str):
            latest_user["content"] = [
                {"type": "text", "text": latest_user["content"]},
                {"type": "text", "text": text},
            ]
        else:
            latest_user["content"].append({"type": "text", "text": text})

    # ------------------------------------------------------------------ model call

    def _call_model(self, system_prompt: str, messages: list):
        try:
            return self.client.messages.create(
                model=self.model,
                max_tokens=config.MAX_TOKENS,
                system=system_prompt,
                messages=messages,
                tools=[self.schema.tool()],
                tool_choice={"type": "tool", "name": self.schema.tool_name},
            )
        except anthropic.APIStatusError as e:
            print(f"[EXTRACT] Model API error: {e.status_code} {e.message}")
            if e.status_code == 429:
                raise UpstreamError("Rate limit exceeded. Please try again later.",
                                    upstream_status=429, status=429) from e
            if e.status_code == 402:
                raise UpstreamError("AI credits exhausted. Please add credits to continue.",
                                    upstream_status=402, status=402) from e
            raise UpstreamError("AI service request failed", upstream_status=e.status_code) from e
        except anthropic.APIConnectionError as e:
            print(f"[EXTRACT] Could not reach model API: {e}")
            raise UpstreamError("AI service is unreachable. Please try again.") from e

    def parse_tool_result(self, response) -> dict:
        """Return the forced tool call's arguments, restricted to known fields."""
        tool_block = next(
            (block for block in getattr(response, "content", None) or []
             if getattr(block, "type", None) == "tool_use" and block.name == self.schema.tool_name),
            None,
        )
        if tool_block is None:
            raise ExtractionError("No structured result in model response")

        arguments = tool_block.input
        if isinstance(arguments, str):
            try:
                arguments = json.loads(arguments)
            except json.JSONDecodeError as e:
                raise ExtractionError(f"Structured result is not valid JSON: {e}") from e
        if not isinstance(arguments, dict):
            raise ExtractionError("Structured result is not an object")

        partial = {}
        for key, value in arguments.items():
            if key not in self.schema.fields:
                print(f"[EXTRACT] Ignoring unknown field from model: {key}")
                continue
            if not isinstance(value, SCALAR_TYPES):
                raise ExtractionError(f"Field '{key}' must be a scalar value")
            partial[key] = value
        return partial

    # ------------------------------------------------------------------ entry point

    def extract(self, request: ExtractionRequest, today: Optional[date] = None) -> ExtractionResult:
        """Validate, call the model once and merge its result into the request's state.

        Raises ValidationError, UpstreamError or ExtractionError. Document
        failures are reported in ``ExtractionResult.document_notes`` instead.
        """
        self.validate(request)
        messages, notes = self.build_messages(request)
        system_prompt = self.build_system_prompt(request.current_state, today=today)

        print(f"[EXTRACT] {self.schema.tool_name}: {len(messages)} messages, "
              f"{len(request.images)} images, {len(request.documents)} documents")
        response = self._call_model(system_prompt, messages)
        partial = self.parse_tool_result(response)
        print(f"[EXTRACT] Model returned {len(partial)} fields: {', '.join(sorted(partial))}")

        return ExtractionResult(
            success=True,
            data=merge_state(request.current_state, partial),
            document_notes=notes,
        )
