"""Configuration handling for castbridge."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

translation_logger = logging.getLogger("translation")
translation_logger.setLevel(logging.INFO)

PROJECT_ROOT = Path(__file__).parent.parent.parent

load_dotenv()


DEFAULT_CONFIG: Dict[str, Any] = {
    "backend": {
        "url": "https://backend.raycast.com/api/v1",
        "token": "",
    },
    "models": {"default_model": "openai-gpt-4o-mini", "default_provider": "openai"},
    "settings": {"timeout": 300},
}


class UsageSettings(BaseModel):
    """Synthetic token counters reported on non-streaming responses."""

    prompt_tokens: int = 10
    completion_tokens: int = 10

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class Settings(BaseModel):
    """Resolved runtime settings, passed explicitly to every component."""

    api_base: str = "https://backend.raycast.com/api/v1"
    api_token: str = ""
    user_agent: str = "Raycast/1.94.2 (macOS Version 15.3.2 (Build 24D81))"
    locale: str = "en-US"
    extra_headers: Dict[str, str] = Field(default_factory=dict)

    default_model: str = "openai-gpt-4o-mini"
    default_provider: str = "openai"
    model_cache_ttl: float = 3600

    default_temperature: float = 0.5
    default_system_instruction: str = "markdown"
    additional_system_instructions: str = ""
    tools: List[Dict[str, str]] = Field(default_factory=list)
    report_observed_finish_reason: bool = True

    system_fingerprint: str = "fp_b376dfbbd5"
    service_tier: str = "default"
    placeholder_text: str = (
        "Sorry, the response content could not be extracted. Please retry the "
        "request or ask the administrator to check the server logs."
    )
    usage: UsageSettings = Field(default_factory=UsageSettings)

    timeout: float = 300
    host: str = "0.0.0.0"
    port: int = 8080
    log_level: str = "INFO"
    translation_log_file: Optional[str] = None

    @property
    def chat_url(self) -> str:
        return f"{self.api_base.rstrip('/')}/ai/chat_completions"

    @property
    def models_url(self) -> str:
        return f"{self.api_base.rstrip('/')}/ai/models"

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "Settings":
        """
        Build settings from a parsed config.yaml dictionary.

        Environment variables (CASTBRIDGE_API_TOKEN, CASTBRIDGE_API_BASE,
        CASTBRIDGE_DEFAULT_MODEL) take precedence over the file.
        """
        backend = config.get("backend") or {}
        models = config.get("models") or {}
        chat = config.get("chat") or {}
        response = config.get("response") or {}
        general = config.get("settings") or {}

        values: Dict[str, Any] = {
            "api_base": backend.get("url"),
            "api_token": backend.get("token"),
            "user_agent": backend.get("user_agent"),
            "locale": backend.get("locale"),
            "extra_headers": backend.get("extra_headers"),
            "default_model": models.get("default_model"),
            "default_provider": models.get("default_provider"),
            "model_cache_ttl": models.get("cache_ttl"),
            "default_temperature": chat.get("temperature"),
            "default_system_instruction": chat.get("system_instruction"),
            "additional_system_instructions": chat.get(
                "additional_system_instructions"
            ),
            "tools": chat.get("tools"),
            "report_observed_finish_reason": chat.get(
                "report_observed_finish_reason"
            ),
            "system_fingerprint": response.get("system_fingerprint"),
            "service_tier": response.get("service_tier"),
            "placeholder_text": response.get("placeholder_text"),
            "usage": response.get("usage"),
            "timeout": general.get("timeout"),
            "host": general.get("host"),
            "port": general.get("port"),
            "log_level": general.get("log_level"),
            "translation_log_file": general.get("translation_log_file"),
        }

        env_overrides = {
            "api_token": os.environ.get("CASTBRIDGE_API_TOKEN"),
            "api_base": os.environ.get("CASTBRIDGE_API_BASE"),
            "default_model": os.environ.get("CASTBRIDGE_DEFAULT_MODEL"),
        }
        for key, value in env_overrides.items():
            if value:
                values[key] = value

        settings = cls(**{k: v for k, v in values.items() if v is not None})

        if not settings.api_token:
            logger.warning(
                "No backend token configured; set CASTBRIDGE_API_TOKEN or backend.token"
            )
        return settings


def load_config() -> Dict[str, Any]:
    """
    Load configuration from config.yaml file.
    Returns a dictionary containing the configuration.
    """
    try:
        config_path = PROJECT_ROOT / "config.yaml"
        config_yaml = config_path.read_text()
        config = yaml.safe_load(config_yaml) or {}
        logger.info("Successfully loaded configuration from config.yaml")
        return config
    except Exception as e:
        logger.error(f"Error loading config.yaml: {str(e)}")
        return DEFAULT_CONFIG


def configure_logging(settings: Settings) -> None:
    """Apply the configured log level and attach the translation log file."""
    logging.getLogger().setLevel(settings.log_level.upper())

    if not settings.translation_log_file:
        return

    log_file = Path(settings.translation_log_file)
    if not log_file.is_absolute():
        log_file = PROJECT_ROOT / log_file

    for handler in translation_logger.handlers:
        if (
            isinstance(handler, logging.FileHandler)
            and handler.baseFilename == os.path.abspath(log_file)
        ):
            return

    try:
        os.makedirs(log_file.parent, exist_ok=True)
        file_handler = logging.FileHandler(str(log_file), mode="a")
    except OSError as e:
        logger.error(f"Failed to open translation log {log_file}: {str(e)}")
        return

    file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
    )
    translation_logger.addHandler(file_handler)
    translation_logger.propagate = True
    logger.info(f"Writing translation log to {log_file}")
