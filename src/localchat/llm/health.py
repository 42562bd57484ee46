"""Connection health check: is the endpoint up and does it serve the model?"""

from __future__ import annotations

import logging

from localchat.errors import ConnectionTimeoutError, EndpointUnreachableError
from localchat.types import ConnectionFailure, ConnectionStatus

from .directory import ModelDirectory

_logger = logging.getLogger(__name__)

_LATEST = ":latest"


def model_available(desired: str, available: list[str]) -> bool:
    """Check *desired* against server names, ignoring a ``:latest`` tag.

    ``llama3`` matches ``llama3:latest`` and vice versa.
    """
    base = desired.removesuffix(_LATEST)
    return any(
        name == desired
        or name.removesuffix(_LATEST) == base
        or name == f"{base}{_LATEST}"
        for name in available
    )


def pick_model(configured: str, available: list[str]) -> str:
    """Choose the model to use given what the server offers.

    Exact match first, then the first name containing *configured*, then the
    first available model.  With nothing available, *configured* is kept.
    """
    if not available or configured in available:
        return configured
    for name in available:
        if configured and configured in name:
            return name
    return available[0]


async def check_connection(
    directory: ModelDirectory, endpoint: str, model: str,
) -> ConnectionStatus:
    """Classify *endpoint* as usable for *model* or explain why not.

    Always goes to the network; a successful probe refreshes the cache.
    """
    try:
        models = await directory.fetch(endpoint)
    except ConnectionTimeoutError:
        return ConnectionStatus(
            ok=False,
            reason=ConnectionFailure.TIMEOUT,
            error="Connection timeout. Is Ollama running and accessible?",
        )
    except EndpointUnreachableError as e:
        _logger.info("Health check failed for %s: %s", endpoint, e)
        if e.status_code is not None:
            error = "Ollama server unreachable. Check URL or CORS settings."
        else:
            error = f"Connection failed. Is Ollama running at {endpoint}?"
        return ConnectionStatus(
            ok=False, reason=ConnectionFailure.UNREACHABLE, error=error,
        )

    if not model_available(model, models):
        listing = ", ".join(models) or "none"
        return ConnectionStatus(
            ok=False,
            reason=ConnectionFailure.MODEL_NOT_FOUND,
            error=(
                f"Model '{model}' not found. Available models: {listing}. "
                f"Run 'ollama pull {model}' to download it."
            ),
            available_models=models,
        )
    return ConnectionStatus(ok=True, available_models=models)
