"""Model catalogue cache mapping public model ids to backend provider/model pairs."""

import asyncio
import logging
import time
from typing import Dict, List, Optional, Tuple

import httpx
from pydantic import ValidationError

from .backends import build_backend_headers
from .config import Settings
from .models import ModelInfo

logger = logging.getLogger(__name__)


class ModelFetchError(Exception):
    """Raised when the model catalogue cannot be fetched and nothing is cached."""


def parse_models(payload: dict) -> Dict[str, ModelInfo]:
    """Parse a backend ``{"models": [...]}`` document into an id -> info map."""
    models: Dict[str, ModelInfo] = {}
    for item in payload.get("models") or []:
        if not isinstance(item, dict):
            continue
        entry = dict(item)
        entry.setdefault("id", entry.get("model"))
        try:
            info = ModelInfo.model_validate(entry)
        except ValidationError as e:
            logger.warning(f"Skipping malformed model entry {item}: {str(e)}")
            continue
        models[info.id] = info
    return models


class ModelCache:
    """
    Time-based cache of the backend model catalogue.

    The catalogue is fetched lazily and refreshed on read once it is older
    than ``settings.model_cache_ttl``. A failed refresh keeps serving the
    previous catalogue.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.models: Dict[str, ModelInfo] = {}
        self.fetched_at: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def is_expired(self) -> bool:
        if self.fetched_at is None:
            return True
        return time.monotonic() - self.fetched_at >= self.settings.model_cache_ttl

    async def fetch_models(self) -> Dict[str, ModelInfo]:
        async with httpx.AsyncClient(timeout=self.settings.timeout) as client:
            response = await client.get(
                self.settings.models_url, headers=build_backend_headers(self.settings)
            )
        if response.status_code != 200:
            raise ModelFetchError(
                f"Model catalogue request failed: {response.status_code} {response.text}"
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise ModelFetchError(f"Model catalogue is not valid JSON: {str(e)}") from e
        if not isinstance(payload, dict):
            raise ModelFetchError("Model catalogue has an unexpected shape")
        return parse_models(payload)

    async def refresh(self) -> Dict[str, ModelInfo]:
        """Fetch the catalogue now, falling back to the cached one on failure."""
        async with self._lock:
            return await self._refresh()

    async def get_models(self) -> Dict[str, ModelInfo]:
        """Return the catalogue, refreshing it first when expired."""
        if not self.is_expired:
            return self.models
        async with self._lock:
            if not self.is_expired:
                return self.models
            return await self._refresh()

    async def _refresh(self) -> Dict[str, ModelInfo]:
        try:
            models = await self.fetch_models()
        except (httpx.HTTPError, ModelFetchError) as e:
            if self.fetched_at is None:
                raise ModelFetchError(str(e)) from e
            logger.warning(f"Model refresh failed, serving cached models: {str(e)}")
            return self.models

        self.models = models
        self.fetched_at = time.monotonic()
        logger.info(f"Fetched {len(models)} models from backend")
        return self.models

    def resolve(
        self, model_name: str, models: Optional[Dict[str, ModelInfo]] = None
    ) -> Tuple[str, str]:
        """
        Map a public model id to its backend ``(provider, model)`` pair.

        Unknown ids fall back to the configured default model, then to the
        default provider with the id unchanged.
        """
        if models is None:
            models = self.models

        info = models.get(model_name)
        if info is not None:
            return info.provider, info.model

        logger.warning(
            f"Model {model_name} not found in catalogue, using {self.settings.default_model}"
        )
        default = models.get(self.settings.default_model)
        if default is not None:
            return default.provider, default.model

        return self.settings.default_provider, model_name

    def list_models(
        self, models: Optional[Dict[str, ModelInfo]] = None
    ) -> List[ModelInfo]:
        if models is None:
            models = self.models
        return sorted(models.values(), key=lambda info: info.id)
