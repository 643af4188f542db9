"""Text extraction from backend stream events and response bodies."""

import json
import logging
from typing import Any, Dict, NamedTuple, Optional

from pydantic import ValidationError

from .config import translation_logger
from .models import BackendEvent

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class ExtractedEvent(NamedTuple):
    """Fragment and terminal reason recovered from one backend event."""

    text: Optional[str] = None
    finish_reason: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.text and not self.finish_reason


def strip_data_prefix(line: str) -> Optional[str]:
    """Return the payload of a ``data:`` line, or None for any other line."""
    if not line.startswith(DATA_PREFIX):
        return None
    return line[len(DATA_PREFIX):].strip()


def _non_empty_string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    return None


def _search_event_fields(data: Dict[str, Any]) -> Optional[str]:
    text = _non_empty_string(data.get("text"))
    if text:
        return text

    content = _non_empty_string(data.get("content"))
    if content:
        return content

    message = data.get("message")
    if isinstance(message, dict):
        return _non_empty_string(message.get("content"))

    return None


def extract_event(payload: str) -> ExtractedEvent:
    """
    Extract a text fragment and finish reason from one event payload.

    Strategies are tried in order and the first that succeeds wins:

    1. the documented ``{"text", "finish_reason"}`` shape, strictly validated;
    2. any JSON object, searching ``text``, ``content`` and
       ``message.content``, plus a string ``finish_reason``;
    3. nothing: the event is logged and skipped.

    The end-of-stream sentinel yields an empty event. This never raises.
    """
    payload = payload.strip()
    if payload == DONE_SENTINEL:
        translation_logger.debug("Reached end of backend stream")
        return ExtractedEvent()

    try:
        event = BackendEvent.model_validate_json(payload)
    except ValidationError as e:
        logger.debug("Event does not match the documented shape: %s", e)
    else:
        if event.text:
            return ExtractedEvent(event.text, event.finish_reason or None)
        if event.finish_reason:
            return ExtractedEvent(None, event.finish_reason)
        translation_logger.info("Empty text field in otherwise valid event")
        return ExtractedEvent()

    try:
        data = json.loads(payload)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning("Failed to parse event payload as JSON: %s", e)
        return ExtractedEvent()

    if not isinstance(data, dict):
        logger.warning("Event payload is not a JSON object: %s", payload)
        return ExtractedEvent()

    text = _search_event_fields(data)
    finish_reason = _non_empty_string(data.get("finish_reason"))
    if text:
        translation_logger.info(f"Found text in generic JSON event: {text}")
        return ExtractedEvent(text, finish_reason)
    if finish_reason:
        return ExtractedEvent(None, finish_reason)

    logger.warning("Found JSON event but no text/content fields: %s", payload)
    return ExtractedEvent()


def extract_text_from_document(document: Any) -> str:
    """
    Search a whole JSON response body for answer text.

    Checks ``content``, ``choices[0].message.content``,
    ``choices[0].delta.content``, ``text`` and ``completion`` in that order.
    """
    if not isinstance(document, dict):
        return ""

    content = _non_empty_string(document.get("content"))
    if content:
        return content

    choices = document.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        choice = choices[0]
        for key in ("message", "delta"):
            nested = choice.get(key)
            if isinstance(nested, dict):
                content = _non_empty_string(nested.get("content"))
                if content:
                    return content

    for key in ("text", "completion"):
        value = _non_empty_string(document.get(key))
        if value:
            return value

    return ""
