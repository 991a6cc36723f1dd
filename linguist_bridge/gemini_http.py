"""
Gemini REST client (generateContent) shared by translation and synthesis.

Uses API key authentication and one pooled aiohttp session for the process.
"""
import asyncio
import os
import time
from typing import Any, Dict, Optional

import aiohttp

from logging_setup import get_logger, Component

from .errors import UpstreamError, redact_detail

logger = get_logger(Component.BRIDGE)

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"


class GeminiRestClient:
    """Single request/response calls to `models/{model}:generateContent`."""

    def __init__(self, *, api_key: str, base_url: str = GEMINI_API_BASE):
        if not api_key:
            raise ValueError("Gemini REST client requires an API key")
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._http_session: Optional[aiohttp.ClientSession] = None
        self._connector: Optional[aiohttp.TCPConnector] = None

    def _get_or_create_session(self) -> aiohttp.ClientSession:
        """
        Get or create the shared HTTP session.

        Reuses TCP connections between turns to keep per-turn latency down.
        """
        if self._http_session is None or self._http_session.closed:
            pool_size = int(os.getenv("GEMINI_CONNECTION_POOL_SIZE", "10"))
            connect_timeout = float(os.getenv("GEMINI_CONNECTION_TIMEOUT", "3.0"))

            self._connector = aiohttp.TCPConnector(
                limit=pool_size,
                limit_per_host=pool_size,
                ttl_dns_cache=300,
                force_close=False,
            )
            self._http_session = aiohttp.ClientSession(
                connector=self._connector,
                timeout=aiohttp.ClientTimeout(connect=connect_timeout),
                headers={"x-goog-api-key": self._api_key},
            )
            logger.info(
                "Gemini connection pool created",
                pool_size=pool_size,
                connect_timeout_ms=int(connect_timeout * 1000),
            )
        return self._http_session

    async def generate_content(
        self,
        model: str,
        payload: Dict[str, Any],
        *,
        stage: str,
        timeout: float,
    ) -> Dict[str, Any]:
        """
        POST one generateContent request.

        Raises UpstreamError on timeout, transport failure or non-200 status.
        """
        url = f"{self._base_url}/models/{model}:generateContent"
        session = self._get_or_create_session()
        t_start = time.perf_counter()

        try:
            async with session.post(
                url,
                json=payload,
                timeout=aiohttp.ClientTimeout(total=timeout),
            ) as response:
                if response.status != 200:
                    error_text = redact_detail(await response.text(), (self._api_key,))
                    logger.error(
                        "Gemini API error",
                        stage=stage,
                        model=model,
                        status_code=response.status,
                        error_text=error_text[:500],
                    )
                    raise UpstreamError(
                        f"{stage} API error: {response.status}",
                        stage=stage,
                        status=response.status,
                    )
                data = await response.json()
        except UpstreamError:
            raise
        except asyncio.TimeoutError as e:
            raise UpstreamError(f"{stage} request timed out after {timeout}s", stage=stage) from e
        except aiohttp.ClientError as e:
            detail = redact_detail(str(e), (self._api_key,))
            raise UpstreamError(f"{stage} connection error: {detail}", stage=stage) from e

        logger.debug(
            "Gemini call completed",
            stage=stage,
            model=model,
            latency_ms=int((time.perf_counter() - t_start) * 1000),
        )
        if not isinstance(data, dict):
            raise UpstreamError(f"{stage} returned a non-object response", stage=stage)
        return data

    async def aclose(self) -> None:
        """Best-effort cleanup of HTTP session and connector. Safe to call multiple times."""
        if self._http_session is not None:
            try:
                await self._http_session.close()
                logger.info("Gemini connection pool closed")
            except Exception as e:
                logger.warning(
                    "Error closing Gemini HTTP session",
                    error=str(e),
                    error_type=type(e).__name__,
                )
            finally:
                self._http_session = None
                self._connector = None


def first_candidate_parts(data: Any) -> list:
    """`candidates[0].content.parts`, or [] when absent or not shaped like a response."""
    if not isinstance(data, dict):
        return []
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
        return []
    content = candidates[0].get("content")
    if not isinstance(content, dict):
        return []
    parts = content.get("parts")
    if not isinstance(parts, list):
        return []
    return [p for p in parts if isinstance(p, dict)]
