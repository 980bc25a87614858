"""
Reasoning service client.

Single-shot JSON request: ``{"prompt": text}`` in, ``{"response": text}`` out.
No retry; one failed attempt surfaces immediately as a ServiceError.
"""

import asyncio
import json
import logging
from typing import Optional

import aiohttp

from voicechat.config import settings
from voicechat.errors import ServiceError

logger = logging.getLogger(__name__)


class ReasoningClient:
    """
    Sends a transcript to the remote reasoning service.

    A session can be injected (shared connection pool); otherwise a
    short-lived one is opened per request.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        timeout_s: Optional[float] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.url = url or settings.reasoning_url
        self.timeout_s = timeout_s if timeout_s is not None else settings.reasoning_timeout_s
        self._session = session

    async def ask(self, text: str) -> str:
        """
        Ask the reasoning service for a reply.

        Args:
            text: Final user transcript

        Returns:
            Reply text

        Raises:
            ServiceError: On transport failure, timeout, non-2xx status or
                malformed payload
        """
        logger.info(f"Reasoning request ({len(text)} chars): {text[:50]}")

        try:
            if self._session is not None:
                return await self._post(self._session, text)

            async with aiohttp.ClientSession() as session:
                return await self._post(session, text)

        except asyncio.TimeoutError as e:
            logger.error(f"Reasoning request timed out after {self.timeout_s}s")
            raise ServiceError("Reasoning service timed out") from e
        except aiohttp.ClientError as e:
            logger.error(f"Reasoning request failed: {e}")
            raise ServiceError(f"Reasoning service unreachable: {e}") from e

    async def _post(self, session: aiohttp.ClientSession, text: str) -> str:
        timeout = aiohttp.ClientTimeout(total=self.timeout_s, connect=5)
        async with session.post(
            self.url,
            json={"prompt": text},
            headers={"Content-Type": "application/json"},
            timeout=timeout,
        ) as response:
            raw = await response.read()

            if not 200 <= response.status < 300:
                error_text = raw.decode("utf-8", errors="replace")
                logger.error(f"Reasoning service error {response.status}: {error_text[:200]}")
                raise ServiceError(
                    f"Reasoning service returned {response.status}",
                    status=response.status,
                )

        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.error(f"Invalid JSON from reasoning service: {e}")
            raise ServiceError("Reasoning service returned invalid JSON") from e

        reply = data.get("response") if isinstance(data, dict) else None
        if not isinstance(reply, str):
            logger.error(f"Reasoning payload missing 'response': {raw[:200]!r}")
            raise ServiceError("Reasoning service returned no response text")

        logger.info(f"Reasoning reply received: {len(reply)} chars")
        return reply
