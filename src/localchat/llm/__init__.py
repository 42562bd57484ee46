"""Streaming client, model directory and health check."""

from localchat.llm.client import CancelToken, ChatStream, OllamaClient
from localchat.llm.directory import InMemoryModelCache, ModelDirectory, SQLiteModelCache
from localchat.llm.envelope import RecordDecoder
from localchat.llm.framing import LineFramer, Utf8StreamDecoder
from localchat.llm.health import check_connection, model_available, pick_model

__all__ = [
    "CancelToken",
    "ChatStream",
    "InMemoryModelCache",
    "LineFramer",
    "ModelDirectory",
    "OllamaClient",
    "RecordDecoder",
    "SQLiteModelCache",
    "Utf8StreamDecoder",
    "check_connection",
    "model_available",
    "pick_model",
]
