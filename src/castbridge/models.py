"""Data models and schemas for castbridge."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ChatMessage(BaseModel):
    """Inbound chat turn. Content is plain text or a list of typed parts."""

    model_config = ConfigDict(extra="allow")

    role: Optional[str] = None
    content: Any = None


class ChatCompletionRequest(BaseModel):
    """
    Inbound chat completions request.

    Fields outside the known schema are kept in order on ``extra_fields``
    so they can be inspected later (``system`` is read from there).
    """

    model_config = ConfigDict(extra="allow")

    messages: List[ChatMessage] = Field(default_factory=list)
    model: Optional[str] = None
    temperature: Optional[float] = None
    stream: bool = False
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    frequency_penalty: Optional[float] = None
    presence_penalty: Optional[float] = None

    @property
    def extra_fields(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})

    @property
    def system(self) -> Optional[str]:
        value = self.extra_fields.get("system")
        if isinstance(value, str) and value:
            return value
        return None


class BackendContent(BaseModel):
    text: str = ""


class BackendMessage(BaseModel):
    """A backend turn: ``{"author": ..., "content": {"text": ...}}``."""

    author: str
    content: BackendContent = Field(default_factory=BackendContent)

    @property
    def text(self) -> str:
        return self.content.text


class BackendTool(BaseModel):
    name: str
    type: str


class BackendChatRequest(BaseModel):
    """Request body sent to the backend chat endpoint."""

    additional_system_instructions: str = ""
    debug: bool = False
    locale: str = "en-US"
    messages: List[BackendMessage]
    model: str
    provider: str
    source: str = "ai_chat"
    system_instruction: str = "markdown"
    temperature: float = 0.5
    thread_id: str
    tools: List[BackendTool] = Field(default_factory=list)


class BackendEvent(BaseModel):
    """The documented shape of one backend stream event."""

    model_config = ConfigDict(extra="forbid")

    text: Optional[str] = None
    finish_reason: Optional[str] = None


class ModelInfo(BaseModel):
    """One entry of the backend model catalogue."""

    model_config = ConfigDict(extra="ignore")

    id: str
    model: str
    provider: str
