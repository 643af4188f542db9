"""An OpenAI-compatible chat completions gateway for the Raycast AI backend."""

__version__ = "0.1.0"

from .config import Settings, load_config
from .adapter import convert_messages
from .extraction import extract_event, extract_text_from_document
from .streaming import EventStreamBuffer, stream_translated
from .aggregation import aggregate_event_stream, build_completion_response, resolve_answer
from .providers import ModelCache, ModelFetchError
