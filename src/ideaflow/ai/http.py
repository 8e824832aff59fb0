"""httpx client for the prototype generation service."""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from ideaflow.ai.base import (
    GenerationRequest,
    GenerationService,
    GenerationServiceError,
    PollResponse,
    SubmitResponse,
)

logger = logging.getLogger(__name__)

# Longest provider body excerpt written to the log
_LOG_BODY_LIMIT = 300


def _category_for_status(status_code: int) -> str:
    if status_code in (401, 403):
        return "unauthorized"
    if status_code == 429:
        return "rate_limited"
    if 400 <= status_code < 500:
        return "rejected"
    return "unavailable"


class HttpGenerationService(GenerationService):
    """Talks to the generation backend over HTTP.

    POST {base_url}/generations   -> {"handle_id", "status"}
    GET  {base_url}/generations/ID -> {"status", "url", "code"}
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers=headers,
            transport=transport,
        )

    async def submit(self, request: GenerationRequest) -> SubmitResponse:
        data = await self._request("POST", "/generations", json=request.model_dump())
        try:
            return SubmitResponse.model_validate(data)
        except ValidationError as e:
            logger.error("Malformed submit response from AI service: %s", e)
            raise GenerationServiceError("bad_response") from e

    async def poll(self, handle_id: str) -> PollResponse:
        data = await self._request("GET", f"/generations/{handle_id}")
        try:
            return PollResponse.model_validate(data)
        except ValidationError as e:
            logger.error("Malformed poll response from AI service: %s", e)
            raise GenerationServiceError("bad_response") from e

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("AI service %s %s timed out", method, path)
            raise GenerationServiceError("timeout") from e
        except httpx.HTTPError as e:
            logger.warning("AI service %s %s failed: %s", method, path, e)
            raise GenerationServiceError("unavailable") from e

        if response.status_code >= 400:
            logger.warning(
                "AI service %s %s returned %d: %s",
                method,
                path,
                response.status_code,
                response.text[:_LOG_BODY_LIMIT],
            )
            raise GenerationServiceError(_category_for_status(response.status_code))

        try:
            return response.json()
        except ValueError as e:
            logger.error("AI service %s %s returned non-JSON body", method, path)
            raise GenerationServiceError("bad_response") from e
