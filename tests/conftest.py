import json
from typing import List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

from castbridge.api import create_app
from castbridge.config import Settings
from castbridge.providers import ModelCache

BACKEND_BASE = "http://backend.test/api/v1"

# Mock backend payloads
MOCK_MODELS_RESPONSE = {
    "models": [
        {"id": "openai-gpt-4o-mini", "model": "gpt-4o-mini", "provider": "openai"},
        {
            "id": "anthropic-claude-sonnet-4",
            "model": "claude-sonnet-4",
            "provider": "anthropic",
        },
        {"id": "google-gemini-2.5-pro", "model": "gemini-2.5-pro", "provider": "google"},
        {"id": "x", "model": "x-backend", "provider": "xai"},
    ]
}

MOCK_EVENT_STREAM = (
    b'data: {"text":"Hello"}\n\n'
    b'data: {"text":" there","finish_reason":"stop"}\n\n'
)


def sse(*payloads: str) -> bytes:
    return "".join(f"data: {payload}\n\n" for payload in payloads).encode()


async def chunked(chunks: List[bytes], error: Optional[Exception] = None):
    for chunk in chunks:
        yield chunk
    if error is not None:
        raise error


class MockBackend:
    """Stands in for the backend behind a patched httpx.AsyncClient.send."""

    def __init__(self):
        self.chat_status = 200
        self.chat_body = MOCK_EVENT_STREAM
        self.chat_chunks: Optional[List[bytes]] = None
        self.chat_error: Optional[Exception] = None
        self.connect_error: Optional[Exception] = None
        self.models_status = 200
        self.models_body = MOCK_MODELS_RESPONSE
        self.chat_requests: List[dict] = []
        self.chat_headers: List[httpx.Headers] = []
        self.models_requests = 0
        self.responses: List[httpx.Response] = []

    async def send(self, client, request: httpx.Request, **kwargs) -> httpx.Response:
        if request.url.path.endswith("/ai/models"):
            self.models_requests += 1
            return httpx.Response(
                self.models_status, json=self.models_body, request=request
            )

        if self.connect_error is not None:
            raise self.connect_error

        self.chat_requests.append(json.loads(request.content))
        self.chat_headers.append(request.headers)

        if self.chat_chunks is not None:
            content = chunked(self.chat_chunks, self.chat_error)
        else:
            content = self.chat_body
        response = httpx.Response(self.chat_status, content=content, request=request)
        self.responses.append(response)
        return response


@pytest.fixture
def settings():
    return Settings(
        api_base=BACKEND_BASE,
        api_token="test-token",
        default_model="openai-gpt-4o-mini",
        translation_log_file=None,
    )


@pytest.fixture
def mock_backend(monkeypatch):
    backend = MockBackend()

    async def mock_send(self, request, **kwargs):
        return await backend.send(self, request, **kwargs)

    monkeypatch.setattr(httpx.AsyncClient, "send", mock_send)
    return backend


@pytest.fixture
def model_cache(settings):
    return ModelCache(settings)


@pytest.fixture
def test_client(settings, model_cache, mock_backend):
    """Create a test client wired to the mock backend"""
    app = create_app(settings, model_cache)
    return TestClient(app)
