"""Conversion of chat-completions turns into backend turns."""

import logging
from typing import Any, Iterable, List, Mapping, Union

from .models import BackendContent, BackendMessage, ChatMessage

logger = logging.getLogger(__name__)


def content_to_text(content: Any) -> str:
    """
    Flatten message content into plain text.

    Strings are used verbatim; a list of typed parts contributes the text of
    every ``{"type": "text"}`` part in order. Any other shape yields "".
    """
    if isinstance(content, str):
        return content

    if isinstance(content, list):
        parts = []
        for part in content:
            if not isinstance(part, Mapping) or part.get("type") != "text":
                continue
            text = part.get("text")
            if isinstance(text, str):
                parts.append(text)
        return "".join(parts)

    return ""


def convert_message(message: Union[ChatMessage, Mapping[str, Any]]) -> BackendMessage:
    if isinstance(message, ChatMessage):
        role, content = message.role, message.content
    elif isinstance(message, Mapping):
        role, content = message.get("role"), message.get("content")
    else:
        role, content = None, None

    author = "assistant" if role == "assistant" else "user"
    return BackendMessage(author=author, content=BackendContent(text=content_to_text(content)))


def convert_messages(
    messages: Iterable[Union[ChatMessage, Mapping[str, Any]]]
) -> List[BackendMessage]:
    """
    Convert chat turns to backend turns, one for one and in order.

    Role "assistant" keeps its author; every other role, including "system",
    is sent as "user". Malformed content degrades to empty text.
    """
    converted = [convert_message(message) for message in messages]
    logger.debug("Converted %d chat messages to backend format", len(converted))
    return converted
