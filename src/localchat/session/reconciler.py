"""Session reconciler: folds a chat stream into a persisted transcript.

Persistence points for one ``send()``:

1. the user message is saved before the request goes out;
2. the finished assistant message is saved once the stream completes;
3. a failure is recorded as a system message and saved.

A cancelled reply stays in memory only, until the next explicit ``save()``.
"""

from __future__ import annotations

import logging
import time
import uuid
from typing import Callable

from localchat.errors import StreamError
from localchat.events.bus import EventBus
from localchat.llm.client import ChatStream, OllamaClient
from localchat.types import (
    ChatEvent,
    ChatSession,
    ConnectionStatus,
    EventType,
    Message,
    Role,
)

from .store import HistoryStore

_logger = logging.getLogger(__name__)

TITLE_LENGTH = 30
DEFAULT_TITLE = "New Chat"


def _now_ms() -> int:
    return int(time.time() * 1000)


def derive_title(messages: list[Message]) -> str:
    """First user message, cut to 30 characters (``...`` marks a cut)."""
    for msg in messages:
        if msg.role == Role.USER:
            title = msg.content[:TITLE_LENGTH]
            if len(msg.content) > TITLE_LENGTH:
                title += "..."
            return title
    return DEFAULT_TITLE


class SessionReconciler:
    """Owns the transcript of the current conversation.

    Parameters
    ----------
    client:
        Streaming client used for replies and health checks.
    store:
        History storage (``save`` / ``list`` / ``delete``).
    bus:
        Receives ``ChatEvent``s so a UI can follow along.
    clock:
        Returns the current time in milliseconds.
    """

    def __init__(
        self,
        client: OllamaClient,
        store: HistoryStore,
        bus: EventBus | None = None,
        clock: Callable[[], int] = _now_ms,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self.client = client
        self.store = store
        self.bus = bus if bus is not None else EventBus()
        self._clock = clock
        self._id_factory = id_factory

        self.messages: list[Message] = []
        self.session_id: str | None = None
        self._created_at: int | None = None
        self._updated_at = 0

        self.streaming_timestamp: int | None = None
        self.connection: ConnectionStatus | None = None
        self._stream: ChatStream | None = None

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send(self, text: str) -> Message | None:
        """Send *text* and stream the reply into the transcript.

        Returns the assistant message (complete or, when cancelled,
        partial), the ``Error: ...`` system message on failure, or ``None``
        when nothing was sent.
        """
        content = text.strip()
        if not content:
            return None

        if self.connection is not None and not self.connection.ok:
            status = await self.check_connection()
            if not status.ok:
                _logger.info("Send blocked: %s", status.error)
                return None

        self.cancel()

        self.messages.append(
            Message(role=Role.USER, content=content, timestamp=self._next_timestamp()),
        )
        await self.save()

        history = list(self.messages)
        reply_ts = self._next_timestamp()
        self.messages.append(Message(role=Role.ASSISTANT, content="", timestamp=reply_ts))
        self.streaming_timestamp = reply_ts

        stream = self.client.stream_chat(history)
        self._stream = stream
        await self._emit(EventType.STREAM_STARTED, timestamp=reply_ts, model=stream.model)

        accumulated = ""
        try:
            async for delta in stream:
                accumulated += delta
                self._replace_content(reply_ts, accumulated)
                await self._emit(
                    EventType.STREAM_DELTA, timestamp=reply_ts, delta=delta,
                )
        except StreamError as e:
            return await self._record_failure(reply_ts, e)
        finally:
            if self._stream is stream:
                self._stream = None
                self.streaming_timestamp = None

        reply = self._find(reply_ts)
        if not stream.completed:
            _logger.info("Reply %d cancelled after %d chars", reply_ts, len(accumulated))
            await self._emit(
                EventType.STREAM_CANCELLED, timestamp=reply_ts, content=accumulated,
            )
            return reply

        await self.save()
        usage = stream.envelope.usage if stream.envelope is not None else {}
        await self._emit(
            EventType.STREAM_COMPLETED,
            timestamp=reply_ts,
            content=accumulated,
            usage=usage,
        )
        return reply

    def cancel(self) -> None:
        """Stop the reply in flight; its partial content stays in memory."""
        if self._stream is not None:
            self._stream.cancel()

    @property
    def is_streaming(self) -> bool:
        return self._stream is not None

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def save(self) -> ChatSession:
        """Upsert the current transcript.

        The session id is assigned on the first save and ``created_at`` is
        kept for every later revision.
        """
        now = self._clock()
        if self.session_id is None:
            self.session_id = self._id_factory()
            self._created_at = now
        self._updated_at = max(now, self._updated_at + 1)

        session = ChatSession(
            id=self.session_id,
            title=derive_title(self.messages),
            messages=list(self.messages),
            created_at=self._created_at if self._created_at is not None else now,
            updated_at=self._updated_at,
        )
        self.store.save(session)
        await self._emit(
            EventType.SESSION_SAVED,
            session_id=session.id,
            messages=len(session.messages),
        )
        return session

    def new_chat(self) -> None:
        self.cancel()
        self.messages = []
        self.session_id = None
        self._created_at = None
        self._updated_at = 0

    def load(self, session: ChatSession) -> None:
        """Make *session* the current conversation."""
        self.cancel()
        self.messages = list(session.messages)
        self.session_id = session.id
        self._created_at = session.created_at
        self._updated_at = session.updated_at

    def sessions(self) -> list[ChatSession]:
        return self.store.list()

    def delete(self, session_id: str) -> None:
        self.store.delete(session_id)
        if session_id == self.session_id:
            self.new_chat()

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def check_connection(self) -> ConnectionStatus:
        """Run the health check and remember the result for send gating."""
        status = await self.client.check_connection()
        self.connection = status
        await self._emit(
            EventType.CONNECTION_CHECKED,
            ok=status.ok,
            reason=status.reason.value if status.reason else None,
            error=status.error,
        )
        return status

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _next_timestamp(self) -> int:
        now = self._clock()
        if self.messages:
            now = max(now, self.messages[-1].timestamp + 1)
        return now

    def _find(self, timestamp: int) -> Message | None:
        for msg in reversed(self.messages):
            if msg.timestamp == timestamp:
                return msg
        return None

    def _replace_content(self, timestamp: int, content: str) -> None:
        for i in range(len(self.messages) - 1, -1, -1):
            if self.messages[i].timestamp == timestamp:
                self.messages[i] = self.messages[i].with_content(content)
                return

    async def _record_failure(self, reply_ts: int, error: StreamError) -> Message:
        _logger.warning("Chat stream failed: %s", error)
        placeholder = self._find(reply_ts)
        if placeholder is not None and not placeholder.content:
            self.messages.remove(placeholder)

        notice = Message(
            role=Role.SYSTEM,
            content=f"Error: {error}",
            timestamp=self._next_timestamp(),
        )
        self.messages.append(notice)
        await self.save()
        await self._emit(EventType.STREAM_ERROR, timestamp=reply_ts, error=str(error))
        return notice

    async def _emit(self, event_type: EventType, **data) -> None:
        await self.bus.emit(ChatEvent(type=event_type, data=data))
