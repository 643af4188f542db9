"""FastAPI application and routes for castbridge."""

import json
import logging
import time
from typing import Optional

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask
from pydantic import ValidationError

from .aggregation import build_completion_response, render_json, resolve_answer
from .backends import build_backend_request, call_backend
from .config import Settings, configure_logging, load_config, translation_logger
from .models import ChatCompletionRequest
from .providers import ModelCache, ModelFetchError
from .streaming import STREAM_HEADERS, stream_translated

logger = logging.getLogger(__name__)


def error_response(
    status_code: int, message: str, error_type: str, details: Optional[str] = None
) -> Response:
    error = {"message": message, "type": error_type}
    if details:
        error["details"] = details
    return Response(
        content=json.dumps({"error": error}),
        status_code=status_code,
        media_type="application/json",
    )


def streaming_response(
    backend_response: httpx.Response, model: str, client: httpx.AsyncClient
) -> StreamingResponse:
    """
    Wrap a backend event stream in an SSE response.

    The background task releases the backend response and client even when
    the body is never iterated.
    """

    async def release():
        await backend_response.aclose()
        await client.aclose()

    return StreamingResponse(
        stream_translated(backend_response, model, on_close=client.aclose),
        media_type="text/event-stream",
        headers=STREAM_HEADERS,
        background=BackgroundTask(release),
    )


def create_app(
    settings: Optional[Settings] = None, model_cache: Optional[ModelCache] = None
) -> FastAPI:
    """Build the gateway application around the given settings and model cache."""
    if settings is None:
        settings = Settings.from_config(load_config())
    if model_cache is None:
        model_cache = ModelCache(settings)

    configure_logging(settings)

    app = FastAPI(title="castbridge")
    app.state.settings = settings
    app.state.model_cache = model_cache

    @app.post("/v1/chat/completions")
    @app.post("/chat/completions")
    async def chat_completions(request: Request) -> Response:
        """
        Chat completions endpoint:
        - Translates the request into the backend's chat format
        - Streams the answer back as chat.completion.chunk events when
          ``stream`` is set, otherwise returns one chat.completion document
        """
        body = await request.body()

        try:
            chat_request = ChatCompletionRequest.model_validate(json.loads(body))
        except (json.JSONDecodeError, UnicodeDecodeError, ValidationError) as e:
            return error_response(
                400, "Invalid request body", "invalid_request_error", str(e)
            )

        if not chat_request.messages:
            return error_response(
                400, "Missing or invalid 'messages' field", "invalid_request_error"
            )

        model = chat_request.model or settings.default_model

        try:
            models = await model_cache.get_models()
        except ModelFetchError as e:
            logger.warning(f"Using models with possible error: {str(e)}")
            models = {}

        provider, backend_model = model_cache.resolve(model, models)
        logger.info(f"Using provider: {provider}, model: {backend_model}")

        try:
            payload = build_backend_request(
                chat_request, provider, backend_model, settings
            )
            backend_body = json.dumps(payload).encode()
        except (TypeError, ValueError) as e:
            return error_response(
                500, "Failed to marshal request", "server_error", str(e)
            )

        client = httpx.AsyncClient(timeout=settings.timeout)
        try:
            result = await call_backend(backend_body, settings, client)
        except BaseException:
            await client.aclose()
            raise

        if result["status_code"] != 200:
            await client.aclose()
            return Response(
                content=json.dumps(result["content"]),
                status_code=result["status_code"],
                media_type="application/json",
            )

        backend_response = result["response"]

        if chat_request.stream:
            return streaming_response(backend_response, model, client)

        try:
            response_body = await backend_response.aread()
        except httpx.HTTPError as e:
            return error_response(
                500, "Error reading response body", "server_error", str(e)
            )
        finally:
            await backend_response.aclose()
            await client.aclose()

        response_text = response_body.decode(errors="replace")
        translation_logger.info(f"Raw response: {response_text}")

        answer = resolve_answer(response_text, settings.placeholder_text)
        finish_reason = (
            answer.finish_reason if settings.report_observed_finish_reason else None
        )
        document = build_completion_response(
            answer.text,
            model,
            settings.usage,
            settings.system_fingerprint,
            settings.service_tier,
            finish_reason,
        )

        try:
            content = render_json(document)
        except (TypeError, ValueError) as e:
            return error_response(
                500, "Error formatting JSON response", "server_error", str(e)
            )

        return Response(content=content, status_code=200, media_type="application/json")

    @app.get("/v1/models")
    @app.get("/models")
    async def list_models() -> Response:
        """List the backend model catalogue, sorted by id."""
        try:
            models = await model_cache.get_models()
        except ModelFetchError as e:
            return error_response(
                500,
                f"An error occurred while fetching models: {str(e)}",
                "relay_error",
                str(e),
            )

        created = int(time.time())
        data = [
            {
                "id": info.id,
                "object": "model",
                "created": created,
                "owned_by": info.provider,
            }
            for info in model_cache.list_models(models)
        ]

        try:
            content = render_json({"object": "list", "data": data})
        except (TypeError, ValueError) as e:
            return error_response(
                500, "Error formatting JSON response", "server_error", str(e)
            )
        return Response(content=content, status_code=200, media_type="application/json")

    @app.post("/v1/refresh-models")
    async def refresh_models():
        """Force a refresh of the model catalogue cache."""
        try:
            await model_cache.refresh()
        except ModelFetchError as e:
            logger.error(f"Model cache refresh failed: {str(e)}")
        return {"status": "success", "message": "Model cache refreshed"}

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {"status": "healthy"}

    return app


app = create_app()


def main():
    import uvicorn

    settings = app.state.settings
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
