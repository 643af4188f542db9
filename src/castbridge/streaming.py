"""Re-emission of the backend event stream as chat.completion.chunk events."""

import json
import logging
import time
import uuid
from typing import AsyncGenerator, Awaitable, Callable, List, Optional

import httpx

from .config import translation_logger
from .extraction import DONE_SENTINEL, ExtractedEvent, extract_event, strip_data_prefix

logger = logging.getLogger(__name__)

DONE_EVENT = f"data: {DONE_SENTINEL}\n\n".encode()

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


class EventStreamBuffer:
    """
    Incrementally splits decoded stream text into event payloads.

    Text is buffered until a full line is available. Lines accumulate into
    the current event group, and a blank line hands the group's ``data:``
    payloads back to the caller.
    """

    def __init__(self):
        self.partial_line = ""
        self.pending_lines: List[str] = []

    def feed(self, text: str) -> List[str]:
        """Add decoded text and return payloads of every completed event group."""
        self.partial_line += text
        payloads: List[str] = []

        while True:
            newline = self.partial_line.find("\n")
            if newline == -1:
                break
            line = self.partial_line[:newline].rstrip("\r")
            self.partial_line = self.partial_line[newline + 1 :]

            if line.strip():
                self.pending_lines.append(line)
            elif self.pending_lines:
                payloads.extend(self._drain())

        return payloads

    def flush(self) -> List[str]:
        """Return payloads still buffered when the stream ends."""
        if self.partial_line.strip():
            self.pending_lines.append(self.partial_line.rstrip("\r"))
        self.partial_line = ""
        return self._drain()

    def _drain(self) -> List[str]:
        payloads = []
        for line in self.pending_lines:
            payload = strip_data_prefix(line)
            if payload is None:
                logger.debug("Ignoring non-data line: %s", line)
                continue
            payloads.append(payload)
        self.pending_lines = []
        return payloads


def build_chunk(
    response_id: str, model: str, event: ExtractedEvent, created: Optional[int] = None
) -> dict:
    """Build one chat.completion.chunk document for an extracted event."""
    return {
        "id": response_id,
        "object": "chat.completion.chunk",
        "created": created if created is not None else int(time.time()),
        "model": model,
        "choices": [
            {
                "index": 0,
                "delta": {"content": event.text or ""},
                "finish_reason": event.finish_reason or "",
            }
        ],
    }


def encode_event(document: dict) -> bytes:
    return f"data: {json.dumps(document, ensure_ascii=False)}\n\n".encode()


async def stream_translated(
    backend_response: httpx.Response,
    model: str,
    on_close: Optional[Callable[[], Awaitable[None]]] = None,
) -> AsyncGenerator[bytes, None]:
    """
    Translate a backend event stream into chat.completion.chunk events.

    Every backend event that yields a fragment or finish reason becomes one
    chunk, written as soon as it is parsed and in the order received. All
    chunks share one response id. Exactly one ``[DONE]`` event follows the
    last chunk, including when reading from the backend fails midway.

    If the consumer stops iterating (client disconnect), nothing else is
    written. The backend response is closed and ``on_close`` awaited in
    either case.
    """
    response_id = f"chatcmpl-{uuid.uuid4()}"
    event_buffer = EventStreamBuffer()
    emitted = 0

    logger.info("Starting stream translation for model: %s", model)

    def to_chunks(payloads: List[str]) -> List[bytes]:
        chunks = []
        for payload in payloads:
            translation_logger.debug(f"Backend event: {payload}")
            event = extract_event(payload)
            if event.is_empty:
                continue
            chunks.append(encode_event(build_chunk(response_id, model, event)))
        return chunks

    try:
        try:
            async for text in backend_response.aiter_text():
                for chunk in to_chunks(event_buffer.feed(text)):
                    emitted += 1
                    yield chunk
        except httpx.HTTPError as e:
            logger.error("Error reading backend stream: %s", str(e))
        else:
            for chunk in to_chunks(event_buffer.flush()):
                emitted += 1
                yield chunk

        logger.info("Backend stream finished after %d chunks, sending [DONE]", emitted)
        yield DONE_EVENT
    finally:
        await backend_response.aclose()
        if on_close is not None:
            await on_close()
