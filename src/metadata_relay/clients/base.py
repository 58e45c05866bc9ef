"""Base client with common functionality"""

import asyncio
import json
from typing import Dict, Any, Optional
import aiohttp
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)
from loguru import logger

from ..errors import (
    DecodeError,
    InvalidContentTypeError,
    MessageTooLargeError,
)

# Markers the indexers put in error bodies
TOO_LARGE_MARKERS = ("message length too large", "message too large")
DECODE_MARKERS = ("failed to decode",)
CONTENT_TYPE_MARKERS = ("invalid content type",)


def classify_error_text(text: str) -> Optional[Exception]:
    """Map an indexer error message onto a fetch error, if it is one we know"""
    lowered = (text or "").lower()
    if any(marker in lowered for marker in TOO_LARGE_MARKERS):
        return MessageTooLargeError(text)
    if any(marker in lowered for marker in DECODE_MARKERS):
        return DecodeError(text)
    if any(marker in lowered for marker in CONTENT_TYPE_MARKERS):
        return InvalidContentTypeError(text)
    return None


class BaseClient:
    """HTTP JSON client holding one session, with retry logic"""

    def __init__(
        self,
        base_url: str,
        timeout: int = 30,
        max_response_bytes: int = 16 * 1024 * 1024,
        rate_limit: int = 100,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_response_bytes = max_response_bytes
        self._rate_limiter_semaphore = asyncio.Semaphore(rate_limit)
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    def is_open(self) -> bool:
        return self._session is not None and not self._session.closed

    async def open(self) -> None:
        if self.is_open:
            return
        self._session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.timeout),
            headers={"Content-Type": "application/json"},
        )

    async def close(self) -> None:
        session, self._session = self._session, None
        if session is not None and not session.closed:
            await session.close()

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def url(self, endpoint: str) -> str:
        return f"{self.base_url}/{endpoint.lstrip('/')}"

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type((aiohttp.ClientError, asyncio.TimeoutError)),
        reraise=True,
    )
    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json_data: Optional[Any] = None,
    ) -> Any:
        """Make HTTP request with retry logic"""
        if not self.is_open:
            await self.open()

        async with self._rate_limiter_semaphore:
            try:
                async with self._session.request(
                    method=method,
                    url=self.url(endpoint),
                    params=params,
                    json=json_data,
                ) as response:
                    return await self._read_response(response)
            except aiohttp.ClientError as e:
                logger.error(f"Request to {self.base_url} failed: {e}")
                raise

    async def _read_response(self, response: aiohttp.ClientResponse) -> Any:
        if response.status == 429:  # Rate limited
            logger.warning(f"Rate limited by {self.base_url}, backing off")
            await asyncio.sleep(5)
            raise aiohttp.ClientResponseError(
                request_info=response.request_info,
                history=response.history,
                status=429,
            )
        if response.status == 413:
            raise MessageTooLargeError(f"{self.base_url} answered 413")
        if response.content_length and response.content_length > self.max_response_bytes:
            raise MessageTooLargeError(
                f"Response of {response.content_length} bytes exceeds {self.max_response_bytes}"
            )

        body = await response.read()
        if len(body) > self.max_response_bytes:
            raise MessageTooLargeError(
                f"Response of {len(body)} bytes exceeds {self.max_response_bytes}"
            )
        text = body.decode("utf-8", errors="replace")

        if response.status >= 400:
            known = classify_error_text(text)
            if known is not None:
                raise known
            response.raise_for_status()

        if response.content_type != "application/json":
            raise classify_error_text(text) or InvalidContentTypeError(
                f"Unexpected content type {response.content_type!r} from {self.base_url}"
            )

        try:
            data = json.loads(text)
        except ValueError as e:
            raise DecodeError(f"Invalid JSON from {self.base_url}: {e}")

        if isinstance(data, dict) and data.get("error"):
            known = classify_error_text(str(data["error"]))
            if known is not None:
                raise known
        return data
