"""Model directory: the server's model list, cached per endpoint.

Cache keys are the exact endpoint strings.  ``http://host:11434`` and
``http://host:11434/`` are two different rows; no URL normalization is
applied.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Callable, Protocol

import httpx

from localchat.errors import (
    ConnectionTimeoutError,
    EndpointUnreachableError,
    TransportError,
)
from localchat.types import ModelDirectoryEntry

_logger = logging.getLogger(__name__)

CACHE_TTL_MS = 5 * 60 * 1000
_FETCH_TIMEOUT = 5  # seconds


def _now_ms() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Cache backends
# ---------------------------------------------------------------------------

class ModelCache(Protocol):
    def get(self, endpoint: str) -> ModelDirectoryEntry | None: ...

    def put(self, entry: ModelDirectoryEntry) -> None: ...


class InMemoryModelCache:
    """Process-lifetime cache table."""

    def __init__(self) -> None:
        self._entries: dict[str, ModelDirectoryEntry] = {}

    def get(self, endpoint: str) -> ModelDirectoryEntry | None:
        return self._entries.get(endpoint)

    def put(self, entry: ModelDirectoryEntry) -> None:
        self._entries[entry.endpoint] = entry


class SQLiteModelCache:
    """SQLite-backed cache that survives restarts."""

    def __init__(self, db_path: str = "~/.localchat/models.db"):
        if db_path == ":memory:":
            self.db_path = db_path
        else:
            path = Path(db_path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            self.db_path = str(path)
        self._conn = sqlite3.connect(self.db_path)
        self._init_schema()

    def _init_schema(self):
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS model_directory (
                endpoint TEXT PRIMARY KEY,
                models TEXT NOT NULL,
                fetched_at INTEGER NOT NULL
            );
        """)
        self._conn.commit()

    def get(self, endpoint: str) -> ModelDirectoryEntry | None:
        row = self._conn.execute(
            "SELECT models, fetched_at FROM model_directory WHERE endpoint = ?",
            (endpoint,),
        ).fetchone()
        if row is None:
            return None
        models_json, fetched_at = row
        return ModelDirectoryEntry(
            endpoint=endpoint, models=json.loads(models_json), fetched_at=fetched_at,
        )

    def put(self, entry: ModelDirectoryEntry) -> None:
        self._conn.execute(
            "INSERT INTO model_directory (endpoint, models, fetched_at) "
            "VALUES (?, ?, ?) "
            "ON CONFLICT(endpoint) DO UPDATE SET models=?, fetched_at=?",
            (entry.endpoint, json.dumps(entry.models), entry.fetched_at,
             json.dumps(entry.models), entry.fetched_at),
        )
        self._conn.commit()

    def close(self):
        self._conn.close()


# ---------------------------------------------------------------------------
# Directory
# ---------------------------------------------------------------------------

class ModelDirectory:
    """Fetches ``/api/tags`` and time-boxes the result per endpoint.

    Parameters
    ----------
    cache:
        Backing store for entries.  Defaults to an in-memory table.
    ttl_ms:
        Entries older than this are treated as cache misses.
    clock:
        Returns the current time in milliseconds.
    transport:
        Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        cache: ModelCache | None = None,
        ttl_ms: int = CACHE_TTL_MS,
        clock: Callable[[], int] = _now_ms,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._cache: ModelCache = cache if cache is not None else InMemoryModelCache()
        self._ttl_ms = ttl_ms
        self._clock = clock
        self._http = httpx.AsyncClient(
            timeout=httpx.Timeout(_FETCH_TIMEOUT), transport=transport,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def list_models(self, endpoint: str, force_refresh: bool = False) -> list[str]:
        """Return the model names served at *endpoint*.

        Never raises: any failure yields ``[]``.
        """
        if not force_refresh:
            cached = self.cached(endpoint)
            if cached is not None:
                return cached

        try:
            return await self.fetch(endpoint)
        except ConnectionTimeoutError:
            _logger.debug("Model list request to %s timed out", endpoint)
        except TransportError as e:
            _logger.warning("Error fetching models from %s: %s", endpoint, e)
        return []

    def cached(self, endpoint: str) -> list[str] | None:
        """Return the unexpired cached names for *endpoint*, if any."""
        try:
            entry = self._cache.get(endpoint)
        except (sqlite3.Error, ValueError) as e:
            # corrupt row: bad JSON or a non-list models column
            _logger.warning("Model cache read failed for %s: %s", endpoint, e)
            return None
        if entry is None or not entry.is_fresh(self._clock(), self._ttl_ms):
            return None
        return list(entry.models)

    async def fetch(self, endpoint: str) -> list[str]:
        """Request the model list, bypassing the cache, and store it.

        Raises ``ConnectionTimeoutError`` or ``EndpointUnreachableError``.
        """
        try:
            resp = await self._http.get(f"{endpoint}/api/tags")
        except httpx.TimeoutException as e:
            raise ConnectionTimeoutError(f"Timed out fetching models: {e}") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise EndpointUnreachableError(f"Cannot reach {endpoint}: {e}") from e

        if not resp.is_success:
            raise EndpointUnreachableError(
                f"Failed to fetch models: {resp.status_code} {resp.reason_phrase}",
                status_code=resp.status_code,
            )
        try:
            data = resp.json()
            names = [m["name"] for m in data.get("models") or []]
        except (ValueError, AttributeError, KeyError, TypeError) as e:
            raise EndpointUnreachableError(f"Invalid model list response: {e}") from e

        self._store(ModelDirectoryEntry(
            endpoint=endpoint, models=names, fetched_at=self._clock(),
        ))
        return names

    async def close(self) -> None:
        await self._http.aclose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _store(self, entry: ModelDirectoryEntry) -> None:
        try:
            self._cache.put(entry)
        except sqlite3.Error as e:
            _logger.warning("Failed to cache models: %s", e)
