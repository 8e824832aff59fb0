"""Maps exceptions escaping a service operation onto ServiceResult failures."""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import aiosqlite

from ideaflow.ai.base import GenerationServiceError
from ideaflow.models.result import ErrorKind, ServiceResult
from ideaflow.storage.base import StorageError

logger = logging.getLogger(__name__)

DB_ERROR_MESSAGE = "A database error occurred. Please try again."
AI_ERROR_MESSAGE = "The AI service is unavailable. Please try again."
UNKNOWN_ERROR_MESSAGE = "An unexpected error occurred."


def service_boundary(
    operation: str,
) -> Callable[[Callable[..., Awaitable[ServiceResult]]], Callable[..., Awaitable[ServiceResult]]]:
    """Decorate an async service method so it never raises.

    Storage failures become DB_ERROR, generation service failures AI_ERROR,
    and anything else UNKNOWN_ERROR. Details go to the log only.
    Cancellation is always propagated.
    """

    def decorator(
        func: Callable[..., Awaitable[ServiceResult]],
    ) -> Callable[..., Awaitable[ServiceResult]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> ServiceResult:
            try:
                return await func(*args, **kwargs)
            except asyncio.CancelledError:
                raise
            except (StorageError, aiosqlite.Error) as e:
                logger.error("%s failed with a storage error: %s", operation, e)
                return ServiceResult.failure(ErrorKind.DB_ERROR, DB_ERROR_MESSAGE)
            except GenerationServiceError as e:
                logger.error("%s failed calling the AI service (%s)", operation, e.category)
                return ServiceResult.failure(ErrorKind.AI_ERROR, AI_ERROR_MESSAGE)
            except Exception:
                logger.exception("Unexpected error in %s", operation)
                return ServiceResult.failure(ErrorKind.UNKNOWN_ERROR, UNKNOWN_ERROR_MESSAGE)

        return wrapper

    return decorator
