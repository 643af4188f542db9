"""
Tests for the model listing, cache refresh and model resolution.
"""
import pytest
from grappa import should

from castbridge.config import Settings
from castbridge.providers import ModelCache, ModelFetchError, parse_models
from .conftest import BACKEND_BASE, MOCK_MODELS_RESPONSE


def test_list_models_sorted_by_id(test_client):
    response = test_client.get("/v1/models")

    response.status_code | should.equal(200)
    response.headers["content-type"] | should.equal("application/json")
    response.text | should.end_with("}\n")

    data = response.json()
    data["object"] | should.equal("list")
    ids = [entry["id"] for entry in data["data"]]
    ids | should.equal(sorted(ids))
    ids | should.equal([
        "anthropic-claude-sonnet-4",
        "google-gemini-2.5-pro",
        "openai-gpt-4o-mini",
        "x",
    ])
    entry = data["data"][0]
    entry["object"] | should.equal("model")
    entry["owned_by"] | should.equal("anthropic")
    entry["created"] | should.be.a(int)


def test_list_models_unprefixed_route(test_client):
    test_client.get("/models").status_code | should.equal(200)


def test_list_models_fetch_failure(test_client, mock_backend):
    mock_backend.models_status = 500
    mock_backend.models_body = {"error": "boom"}

    response = test_client.get("/v1/models")

    response.status_code | should.equal(500)
    response.json()["error"]["type"] | should.equal("relay_error")


def test_refresh_models_endpoint(test_client, mock_backend):
    test_client.get("/v1/models")
    mock_backend.models_requests | should.equal(1)

    response = test_client.post("/v1/refresh-models")

    response.status_code | should.equal(200)
    response.json() | should.equal({"status": "success", "message": "Model cache refreshed"})
    mock_backend.models_requests | should.equal(2)


def test_models_are_cached_between_requests(test_client, mock_backend):
    test_client.get("/v1/models")
    test_client.get("/v1/models")
    test_client.post(
        "/v1/chat/completions", json={"messages": [{"role": "user", "content": "hi"}]}
    )

    mock_backend.models_requests | should.equal(1)


def test_parse_models_skips_malformed_entries():
    models = parse_models(
        {
            "models": [
                {"id": "a", "model": "a-backend", "provider": "p", "name": "A"},
                {"model": "b-only", "provider": "q"},
                {"id": "broken"},
                "not an object",
            ]
        }
    )

    sorted(models) | should.equal(["a", "b-only"])
    models["a"].model | should.equal("a-backend")
    models["b-only"].id | should.equal("b-only")


def test_parse_models_without_models_key():
    parse_models({}) | should.equal({})


@pytest.mark.asyncio
async def test_expired_cache_is_refreshed(settings, mock_backend):
    cache = ModelCache(settings.model_copy(update={"model_cache_ttl": 0}))

    await cache.get_models()
    await cache.get_models()

    mock_backend.models_requests | should.equal(2)


@pytest.mark.asyncio
async def test_failed_refresh_serves_stale_models(model_cache, mock_backend):
    models = await model_cache.get_models()
    mock_backend.models_status = 500

    refreshed = await model_cache.refresh()

    refreshed | should.equal(models)
    refreshed | should.have.key("x")


@pytest.mark.asyncio
async def test_first_fetch_failure_raises(model_cache, mock_backend):
    mock_backend.models_status = 500

    with pytest.raises(ModelFetchError):
        await model_cache.get_models()


@pytest.mark.asyncio
async def test_non_json_catalogue_raises(model_cache, mock_backend):
    mock_backend.models_body = ["not", "an", "object"]

    with pytest.raises(ModelFetchError):
        await model_cache.get_models()


def test_resolve_known_model():
    cache = ModelCache(Settings(api_base=BACKEND_BASE, translation_log_file=None))
    models = parse_models(MOCK_MODELS_RESPONSE)

    cache.resolve("x", models) | should.equal(("xai", "x-backend"))
    cache.resolve("google-gemini-2.5-pro", models) | should.equal(("google", "gemini-2.5-pro"))


def test_resolve_unknown_model_uses_default_entry():
    cache = ModelCache(
        Settings(default_model="openai-gpt-4o-mini", translation_log_file=None)
    )
    models = parse_models(MOCK_MODELS_RESPONSE)

    cache.resolve("missing", models) | should.equal(("openai", "gpt-4o-mini"))


def test_resolve_without_catalogue_uses_default_provider():
    cache = ModelCache(Settings(default_provider="openai", translation_log_file=None))

    cache.resolve("gpt-4o", {}) | should.equal(("openai", "gpt-4o"))
    cache.resolve("gpt-4o") | should.equal(("openai", "gpt-4o"))


def test_list_models_sorts_unsorted_catalogue():
    cache = ModelCache(Settings(translation_log_file=None))
    models = parse_models(
        {
            "models": [
                {"id": "zeta", "model": "z", "provider": "p"},
                {"id": "alpha", "model": "a", "provider": "p"},
                {"id": "mid", "model": "m", "provider": "p"},
            ]
        }
    )

    [info.id for info in cache.list_models(models)] | should.equal(["alpha", "mid", "zeta"])
