"""Backend request construction and dispatch for castbridge."""

import json
import logging
import uuid
from typing import Any, Dict

import httpx

from .adapter import convert_messages
from .config import Settings, translation_logger
from .models import BackendChatRequest, BackendTool, ChatCompletionRequest

logger = logging.getLogger(__name__)


def build_backend_headers(settings: Settings) -> Dict[str, str]:
    """Headers sent with every backend request."""
    headers = {
        "Accept": "application/json",
        "Accept-Language": f"{settings.locale},en;q=0.9",
        "Content-Type": "application/json",
        "User-Agent": settings.user_agent,
    }
    if settings.api_token:
        headers["Authorization"] = f"Bearer {settings.api_token}"
    headers.update(settings.extra_headers)
    return headers


def build_backend_request(
    request: ChatCompletionRequest, provider: str, model: str, settings: Settings
) -> Dict[str, Any]:
    """
    Translate an inbound chat request into the backend request body.

    ``system`` from the inbound request becomes the system instruction, and a
    positive ``max_tokens`` is merged in as an extra top-level field.
    """
    temperature = request.temperature
    if temperature is None:
        temperature = settings.default_temperature

    system_instruction = request.system or settings.default_system_instruction
    if request.system:
        logger.info(f"Using custom system prompt: {system_instruction}")

    backend_request = BackendChatRequest(
        additional_system_instructions=settings.additional_system_instructions,
        debug=False,
        locale=settings.locale,
        messages=convert_messages(request.messages),
        model=model,
        provider=provider,
        source="ai_chat",
        system_instruction=system_instruction,
        temperature=temperature,
        thread_id=str(uuid.uuid4()),
        tools=[BackendTool(**tool) for tool in settings.tools],
    )

    payload = backend_request.model_dump()
    if request.max_tokens and request.max_tokens > 0:
        payload["max_tokens"] = request.max_tokens
    return payload


async def call_backend(
    body: bytes, settings: Settings, client: httpx.AsyncClient
) -> Dict[str, Any]:
    """
    Send a chat request to the backend in streaming mode.

    Args:
        body: Serialized backend request body
        settings: Runtime settings (URL, headers)
        client: HTTP client bound to the request timeout

    Returns:
        Dictionary with the open ``response`` on success, or an error document
        under ``content`` with the status code to relay
    """
    translation_logger.info(f"Sending request to backend: {body.decode()}")

    try:
        request = client.build_request(
            "POST",
            settings.chat_url,
            content=body,
            headers=build_backend_headers(settings),
        )
        response = await client.send(request, stream=True)
    except httpx.HTTPError as e:
        logger.error(f"Error calling backend: {str(e)}")
        return {
            "status_code": 500,
            "content": {
                "error": {
                    "message": f"Error sending request to backend: {str(e)}",
                    "type": "relay_error",
                    "details": str(e),
                }
            },
            "is_stream": False,
        }

    logger.info(f"Backend response status: {response.status_code}")

    if response.status_code == 200:
        return {
            "status_code": response.status_code,
            "response": response,
            "is_stream": True,
        }

    try:
        content = await response.aread()
    except httpx.HTTPError as e:
        content = str(e).encode()
    finally:
        await response.aclose()

    error_text = content.decode(errors="replace")
    try:
        error_text = json.dumps(json.loads(error_text))
    except json.JSONDecodeError:
        pass

    return {
        "status_code": response.status_code,
        "content": {
            "error": {
                "message": f"Backend API error: {response.status_code} {error_text}",
                "type": "relay_error",
            }
        },
        "is_stream": False,
    }
