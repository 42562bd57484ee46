"""Decoding of framed stream records into ``StreamEnvelope`` objects."""

from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from localchat.errors import ProtocolError, ServerError
from localchat.types import StreamEnvelope

_logger = logging.getLogger(__name__)

_PREVIEW = 120


class RecordDecoder:
    """Parse one framed record at a time.

    A malformed record in the middle of a stream is a protocol error.  A
    malformed *final* record (the flushed tail after the peer closed) is an
    expected truncation: it is logged and skipped.
    """

    def decode(self, record: str, *, final: bool = False) -> StreamEnvelope | None:
        """Return the envelope for *record*.

        Raises ``ServerError`` when the envelope carries an ``error`` field
        and ``ProtocolError`` when a non-final record cannot be parsed.
        Returns ``None`` for an unparseable final record.
        """
        try:
            envelope = StreamEnvelope.model_validate(json.loads(record))
        except (json.JSONDecodeError, ValidationError) as e:
            if final:
                _logger.warning(
                    "Discarding truncated final record: %s", record[:_PREVIEW],
                )
                return None
            raise ProtocolError(
                f"Malformed stream record: {e}", record=record,
            ) from e

        if envelope.error is not None:
            raise ServerError(envelope.error)
        return envelope
