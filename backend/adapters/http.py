"""Shared HTTP client for provider adapters: bounded timeouts, retry on connection errors."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import aiohttp
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from backend.exceptions import TransientProviderError

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30
DEFAULT_USER_AGENT = "news-backend/1.0"


def _is_connection_error(exc: BaseException) -> bool:
    """Connection failures are retried; timeouts are not."""
    return isinstance(exc, aiohttp.ClientConnectionError) and not isinstance(
        exc, asyncio.TimeoutError
    )


class HttpClient:
    """Thin aiohttp wrapper returning decoded JSON.

    Every failure mode a provider can produce (timeout, error status,
    non-JSON body) surfaces as TransientProviderError.

    Usage:
        async with HttpClient(timeout=30) as client:
            data = await client.get_json(url, params)
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self.timeout = timeout
        self.user_agent = user_agent
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> HttpClient:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def open(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"User-Agent": self.user_agent, "Accept": "application/json"},
            )

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def get_json(
        self,
        url: str,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Any:
        """GET url and decode the JSON body."""
        await self.open()
        try:
            return await self._get(url, params or {}, headers or {})
        except asyncio.TimeoutError as e:
            raise TransientProviderError(f"Request to {url} timed out after {self.timeout}s") from e
        except aiohttp.ClientError as e:
            raise TransientProviderError(f"Request to {url} failed: {e}") from e

    @retry(
        retry=retry_if_exception(_is_connection_error),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=30),
        reraise=True,
    )
    async def _get(self, url: str, params: Dict[str, Any], headers: Dict[str, str]) -> Any:
        assert self._session is not None
        async with self._session.get(url, params=_clean_params(params), headers=headers) as resp:
            if resp.status in (401, 403, 429):
                logger.warning("%s returned %s (auth/rate limit)", url, resp.status)
            if resp.status >= 400:
                raise TransientProviderError(
                    f"{url} returned HTTP {resp.status}", status=resp.status
                )
            try:
                return await resp.json(content_type=None)
            except ValueError as e:
                raise TransientProviderError(f"{url} returned a malformed JSON body") from e


def _clean_params(params: Dict[str, Any]) -> Dict[str, str]:
    """Drop None values and stringify the rest (aiohttp rejects non-str params)."""
    return {k: str(v) for k, v in params.items() if v is not None}
