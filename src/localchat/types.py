"""Shared data types for localchat."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Conversation types
# ---------------------------------------------------------------------------

class Role(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Message(BaseModel):
    """One transcript entry.

    ``timestamp`` (milliseconds) is the message identity and must be unique
    within a session.  Messages are frozen; content updates go through
    ``with_content()`` which returns a copy.
    """

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str = ""
    timestamp: int

    def with_content(self, content: str) -> Message:
        return self.model_copy(update={"content": content})

    def to_api(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


class ChatSession(BaseModel):
    """A persisted, titled conversation."""

    id: str
    title: str = "New Chat"
    messages: list[Message] = Field(default_factory=list)
    created_at: int
    updated_at: int


# ---------------------------------------------------------------------------
# Wire types
# ---------------------------------------------------------------------------

class EnvelopeMessage(BaseModel):
    model_config = ConfigDict(extra="ignore")

    role: str = "assistant"
    content: str = ""


class StreamEnvelope(BaseModel):
    """One decoded record of the ``/api/chat`` NDJSON stream."""

    model_config = ConfigDict(extra="ignore")

    model: str = ""
    created_at: str = ""
    message: EnvelopeMessage | None = None
    done: bool = False
    error: str | None = None
    done_reason: str | None = None
    prompt_eval_count: int | None = None
    eval_count: int | None = None

    @property
    def delta(self) -> str | None:
        """Content fragment carried by this record, if any."""
        if self.message is not None and self.message.content:
            return self.message.content
        return None

    @property
    def usage(self) -> dict[str, int]:
        usage: dict[str, int] = {}
        if self.prompt_eval_count is not None:
            usage["prompt_tokens"] = self.prompt_eval_count
        if self.eval_count is not None:
            usage["completion_tokens"] = self.eval_count
        if usage:
            usage["total_tokens"] = usage.get("prompt_tokens", 0) + usage.get(
                "completion_tokens", 0,
            )
        return usage


class ModelDirectoryEntry(BaseModel):
    """Cached model list for one endpoint."""

    endpoint: str
    models: list[str] = Field(default_factory=list)
    fetched_at: int  # ms since epoch

    def is_fresh(self, now_ms: int, ttl_ms: int) -> bool:
        return now_ms - self.fetched_at < ttl_ms


# ---------------------------------------------------------------------------
# Health check types
# ---------------------------------------------------------------------------

class ConnectionFailure(enum.Enum):
    """Why an endpoint is not usable, in priority order."""

    UNREACHABLE = "unreachable"
    TIMEOUT = "timeout"
    MODEL_NOT_FOUND = "model_not_found"


@dataclass
class ConnectionStatus:
    """Result of a connection health check."""

    ok: bool
    reason: ConnectionFailure | None = None
    error: str = ""
    available_models: list[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Event types
# ---------------------------------------------------------------------------

class EventType(enum.Enum):
    """Events published by the session reconciler."""

    SESSION_SAVED = "session.saved"

    STREAM_STARTED = "stream.started"
    STREAM_DELTA = "stream.delta"
    STREAM_COMPLETED = "stream.completed"
    STREAM_CANCELLED = "stream.cancelled"
    STREAM_ERROR = "stream.error"

    CONNECTION_CHECKED = "connection.checked"


@dataclass
class ChatEvent:
    """Event emitted via the EventBus."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)
