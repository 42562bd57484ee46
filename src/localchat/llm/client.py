"""Async streaming client for the Ollama native chat API.

``OllamaClient.stream_chat()`` returns a ``ChatStream``: a lazy,
non-restartable async iterator of text deltas.  Starting a new stream
revokes the previous one on the same client, and a revoked stream simply
stops iterating; callers never see an exception for cancellation.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncGenerator, Awaitable, Callable, Sequence

import httpx

from localchat.config import ChatConfig
from localchat.errors import (
    ConnectionTimeoutError,
    EndpointUnreachableError,
    ServerError,
)
from localchat.types import ConnectionStatus, Message, Role, StreamEnvelope

from .directory import ModelDirectory
from .envelope import RecordDecoder
from .framing import LineFramer, Utf8StreamDecoder
from .health import check_connection

_logger = logging.getLogger(__name__)

# Returned by ``ChatStream._until_cancelled`` when the token fired first
_CANCELLED = object()


class CancelToken:
    """One-shot cancellation signal for a single stream."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()


async def _next_chunk(chunks: Any) -> bytes | None:
    try:
        return await chunks.__anext__()
    except StopAsyncIteration:
        return None


def _http_error_text(resp: httpx.Response, body: bytes) -> str:
    """Prefer the server's ``{"error": ...}`` body over the status text."""
    try:
        data = json.loads(body)
    except ValueError:
        data = None
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return f"Ollama API Error: {resp.reason_phrase or resp.status_code}"


class ChatStream:
    """Deltas of one ``/api/chat`` request.

    Iterate with ``async for``.  After exhaustion, ``completed`` tells a
    graceful end apart from a cancellation, and ``envelope`` holds the last
    record received (token counts come with the ``done`` record).
    """

    def __init__(
        self,
        http: httpx.AsyncClient,
        url: str,
        payload: dict[str, Any],
        on_finish: Callable[[ChatStream], None] | None = None,
    ) -> None:
        self._http = http
        self._url = url
        self._payload = payload
        self._on_finish = on_finish
        self._token = CancelToken()
        self._deltas = self._iterate()
        self.completed = False
        self.envelope: StreamEnvelope | None = None

    def __aiter__(self) -> ChatStream:
        return self

    async def __anext__(self) -> str:
        return await self._deltas.__anext__()

    def cancel(self) -> None:
        """Stop the stream; a pending network read unblocks immediately."""
        self._token.cancel()

    @property
    def cancelled(self) -> bool:
        return self._token.cancelled

    @property
    def model(self) -> str:
        return self._payload["model"]

    async def aclose(self) -> None:
        await self._deltas.aclose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _iterate(self) -> AsyncGenerator[str, None]:
        decoder = Utf8StreamDecoder()
        framer = LineFramer()
        records = RecordDecoder()
        resp: httpx.Response | None = None
        try:
            request = self._http.build_request("POST", self._url, json=self._payload)
            opened = await self._until_cancelled(self._http.send(request, stream=True))
            if opened is _CANCELLED:
                _logger.info("Generation cancelled before the response arrived")
                return
            resp = opened

            if not resp.is_success:
                body = await resp.aread()
                raise ServerError(
                    _http_error_text(resp, body), status_code=resp.status_code,
                )

            chunks = resp.aiter_bytes()
            while not self.cancelled:
                chunk = await self._until_cancelled(_next_chunk(chunks))
                if chunk is _CANCELLED:
                    break
                at_eof = chunk is None
                text = decoder.flush() if at_eof else decoder.decode(chunk)
                for record in framer.feed(text):
                    if self.cancelled:
                        break
                    for delta in self._accept(records.decode(record)):
                        yield delta
                    if self.completed:
                        return
                if at_eof and not self.cancelled:
                    # The peer closed without a trailing newline
                    tail = framer.flush()
                    if tail is not None:
                        for delta in self._accept(records.decode(tail, final=True)):
                            yield delta
                    self.completed = True
                    return
            _logger.info("Generation cancelled by caller")
        except httpx.TimeoutException as e:
            raise ConnectionTimeoutError(
                f"Connection timeout while talking to {self._url}: {e}",
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise EndpointUnreachableError(
                f"Connection to {self._url} failed: {e}",
            ) from e
        finally:
            if resp is not None:
                await resp.aclose()
            if self._on_finish is not None:
                self._on_finish(self)

    def _accept(self, envelope: StreamEnvelope | None) -> list[str]:
        if envelope is None:
            return []
        self.envelope = envelope
        if envelope.done:
            self.completed = True
        delta = envelope.delta
        return [delta] if delta else []

    async def _until_cancelled(self, awaitable: Awaitable[Any]) -> Any:
        """Await *awaitable*, or return ``_CANCELLED`` if the token fires first."""
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._token.wait())
        try:
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
                await asyncio.wait({task})
        if task.cancelled():
            return _CANCELLED
        return task.result()


class OllamaClient:
    """Chat client bound to one ``ChatConfig``.

    At most one stream is active per client: ``stream_chat()`` cancels the
    stream already in flight before issuing the new request.
    """

    def __init__(
        self,
        config: ChatConfig,
        directory: ModelDirectory | None = None,
        timeout: float = 120,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._owns_directory = directory is None
        self.directory = directory or ModelDirectory(transport=transport)
        self._http = httpx.AsyncClient(
            headers={"Content-Type": "application/json"},
            timeout=httpx.Timeout(timeout, connect=30, read=300),
            transport=transport,
        )
        self._active: ChatStream | None = None

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    def stream_chat(self, messages: Sequence[Message]) -> ChatStream:
        """Start streaming a reply to *messages*.

        A non-blank ``system_prompt`` is sent as a leading system message;
        it is not part of *messages* and is never persisted.
        """
        if not messages:
            raise ValueError("stream_chat() needs at least one message")
        self.cancel()

        api_messages = [m.to_api() for m in messages]
        system_prompt = self.config.system_prompt.strip()
        if system_prompt:
            api_messages.insert(0, {"role": Role.SYSTEM.value, "content": system_prompt})

        stream = ChatStream(
            self._http,
            f"{self.config.base_url}/api/chat",
            {"model": self.config.model, "messages": api_messages, "stream": True},
            on_finish=self._release,
        )
        self._active = stream
        _logger.debug(
            "Streaming chat: model=%s messages=%d", self.config.model, len(api_messages),
        )
        return stream

    def cancel(self) -> None:
        """Cancel the stream in flight, if any."""
        if self._active is not None:
            self._active.cancel()
            self._active = None

    @property
    def is_streaming(self) -> bool:
        return self._active is not None

    # ------------------------------------------------------------------
    # Model directory / health
    # ------------------------------------------------------------------

    async def list_models(self, force_refresh: bool = False) -> list[str]:
        return await self.directory.list_models(self.config.base_url, force_refresh)

    async def check_connection(self) -> ConnectionStatus:
        return await check_connection(
            self.directory, self.config.base_url, self.config.model,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def update_config(self, **changes: Any) -> None:
        """Replace config fields, e.g. ``update_config(model="llama3")``."""
        self.config = ChatConfig.model_validate(
            {**self.config.model_dump(), **changes},
        )

    def _release(self, stream: ChatStream) -> None:
        if self._active is stream:
            self._active = None

    async def close(self) -> None:
        """Cancel any stream and close underlying HTTP clients."""
        self.cancel()
        await self._http.aclose()
        if self._owns_directory:
            await self.directory.close()
