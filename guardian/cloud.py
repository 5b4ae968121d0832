"""
cloud.py — Stage 3 Cloud Confirmation Client
=============================================

Sends the redacted snippet of an escalated case to a remote explanation
endpoint and decodes its verdict into an Explanation.

Contract:
    confirm(ExplainRequest) -> Explanation | None

    - Hard timeout (default 10 s) around the whole exchange, independent of
      any timeout the caller applies.
    - Timeout, transport error, non-2xx status, non-JSON or non-object body
      → None (logged). This stage never raises into the pipeline.
    - Task cancellation is not swallowed.
"""

import asyncio
import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from guardian.models import Explanation, ExplainRequest

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS: float = 10.0


class CloudConfirmationClient:
    """Async JSON-over-HTTP client for the explanation endpoint."""

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not url:
            raise ValueError("cloud confirmation URL must not be empty")
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    async def confirm(self, request: ExplainRequest) -> Optional[Explanation]:
        try:
            return await asyncio.wait_for(self._post(request), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Stage 3 timed out after {self.timeout:.1f}s, keeping local verdict")
            return None
        except httpx.HTTPStatusError as exc:
            logger.warning(f"Stage 3 returned HTTP {exc.response.status_code}, keeping local verdict")
            return None
        except httpx.HTTPError as exc:
            logger.warning(f"Stage 3 request failed: {exc.__class__.__name__}: {exc}")
            return None
        except ValueError as exc:
            # json decode errors and pydantic ValidationError both land here
            logger.warning(f"Stage 3 response rejected: {exc}")
            return None

    async def _post(self, request: ExplainRequest) -> Explanation:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(self.url, json=request.to_payload(), headers=headers)
            response.raise_for_status()
            data = response.json()

        if not isinstance(data, dict):
            raise ValueError(f"expected a JSON object, got {type(data).__name__}")
        return self._decode(data)

    @staticmethod
    def _decode(data: dict) -> Explanation:
        try:
            return Explanation.model_validate(data)
        except ValidationError as exc:
            raise ValueError(f"invalid explanation payload ({exc.error_count()} errors)") from exc
