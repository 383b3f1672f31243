"""
Per-call timeout enforcement for collaborator calls.

Network calls to Google Cloud must never hang a run; each call is bounded
individually so a slow account cannot stall its siblings.
"""

import asyncio
from typing import Awaitable, TypeVar
import structlog

from finops.shared.core.exceptions import AdapterError

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_TIMEOUT_SECONDS = 30.0


async def call_with_timeout(
    awaitable: Awaitable[T],
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    operation: str = "external_call",
) -> T:
    """Await a collaborator call, converting a timeout into an AdapterError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.warning(
            "external_call_timeout",
            operation=operation,
            timeout_seconds=timeout_seconds
        )
        raise AdapterError(
            f"{operation} timed out after {timeout_seconds:g} seconds",
            code="timeout"
        )
