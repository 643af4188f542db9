"""Aggregation of a backend event stream into one chat.completion document."""

import json
import logging
import time
import uuid
from typing import Any, Dict, NamedTuple, Optional

from .config import UsageSettings, translation_logger
from .extraction import (
    DONE_SENTINEL,
    extract_event,
    extract_text_from_document,
    strip_data_prefix,
)

logger = logging.getLogger(__name__)

DEFAULT_FINISH_REASON = "length"


class AggregatedAnswer(NamedTuple):
    text: str
    finish_reason: Optional[str] = None


def aggregate_event_stream(body: str) -> AggregatedAnswer:
    """
    Concatenate the text of every ``data:`` line in a drained event stream.

    Fragments are appended in line order. Blank lines, non-data lines, the
    ``[DONE]`` sentinel and unparseable events are skipped. The last finish
    reason seen is reported alongside the text.
    """
    translation_logger.info(f"Parsing event stream body, length: {len(body)}")

    if not body.strip():
        translation_logger.info("Empty response received from backend")
        return AggregatedAnswer("")

    fragments = []
    finish_reason = None

    for line_number, line in enumerate(body.splitlines(), start=1):
        if not line.strip():
            continue

        payload = strip_data_prefix(line)
        if payload is None:
            logger.debug("Non-data line %d: %s", line_number, line)
            continue
        if payload == DONE_SENTINEL:
            continue

        event = extract_event(payload)
        if event.text:
            fragments.append(event.text)
        if event.finish_reason:
            finish_reason = event.finish_reason

    text = "".join(fragments)
    translation_logger.info(f"Extracted text length: {len(text)}")
    return AggregatedAnswer(text, finish_reason)


def resolve_answer(body: str, placeholder_text: str) -> AggregatedAnswer:
    """
    Recover the answer text from a complete backend body.

    Falls back to parsing the whole body as one JSON document when the event
    stream yields nothing, and to ``placeholder_text`` when that fails too.
    The result text is never empty.
    """
    answer = aggregate_event_stream(body)
    if answer.text:
        return answer

    logger.info("No text extracted from event stream, trying direct JSON parsing")
    try:
        document = json.loads(body)
    except json.JSONDecodeError:
        document = None

    text = extract_text_from_document(document)
    if text:
        translation_logger.info(f"Extracted text directly from JSON: {text}")
        return AggregatedAnswer(text, answer.finish_reason)

    logger.warning("Could not extract any content from backend response")
    return AggregatedAnswer(placeholder_text, answer.finish_reason)


def build_completion_response(
    text: str,
    model: str,
    usage: UsageSettings,
    system_fingerprint: str,
    service_tier: str = "default",
    finish_reason: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Build the chat.completion document for a resolved answer.

    Usage numbers are synthetic; the backend does not report token counts.
    """
    return {
        "id": f"chatcmpl-{uuid.uuid4()}",
        "object": "chat.completion",
        "created": int(time.time()),
        "model": model,
        "choices": [
            {
                "index": 0,
                "message": {
                    "role": "assistant",
                    "content": text,
                    "refusal": None,
                    "annotations": [],
                },
                "logprobs": None,
                "finish_reason": finish_reason or DEFAULT_FINISH_REASON,
            }
        ],
        "usage": {
            "prompt_tokens": usage.prompt_tokens,
            "completion_tokens": usage.completion_tokens,
            "total_tokens": usage.total_tokens,
            "prompt_tokens_details": {"cached_tokens": 0, "audio_tokens": 0},
            "completion_tokens_details": {
                "reasoning_tokens": 0,
                "audio_tokens": 0,
                "accepted_prediction_tokens": 0,
                "rejected_prediction_tokens": 0,
            },
        },
        "service_tier": service_tier,
        "system_fingerprint": system_fingerprint,
    }


def render_json(document: Any) -> bytes:
    """Pretty-print a response document with a trailing newline."""
    return (json.dumps(document, indent=2, ensure_ascii=False) + "\n").encode()
