"""HTTP transport used by the engine and the token source.

The transport sends exactly one request and reports what came back. It
never retries and never interprets status codes.
"""

import asyncio
import logging
from typing import Mapping, Optional, Protocol

import aiohttp
from multidict import CIMultiDict
from yarl import URL

from .errors import TransportError
from .models import RawResponse


class Transport(Protocol):
    async def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: Optional[bytes] = None,
        timeout: Optional[float] = None,
    ) -> RawResponse:
        ...

    async def close(self) -> None:
        ...


class AiohttpTransport:
    """Transport backed by a shared aiohttp ClientSession

    Args:
        timeout: Default per-request timeout in seconds
    """

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: Optional[bytes] = None,
        timeout: Optional[float] = None,
    ) -> RawResponse:
        total = self.timeout if timeout is None else timeout
        session = self._get_session()
        try:
            async with session.request(
                method,
                URL(url, encoded=True),
                headers=dict(headers),
                data=body,
                timeout=aiohttp.ClientTimeout(total=total),
            ) as response:
                payload = await response.read()
                return RawResponse(
                    status=response.status,
                    headers=CIMultiDict(response.headers),
                    body=payload,
                    url=str(response.url),
                )
        except asyncio.TimeoutError:
            error_msg = f"Request to {url} timed out after {total} seconds"
            logging.error(f"[Transport] {error_msg}")
            raise TransportError(error_msg, url=url, timeout=True)
        except aiohttp.ClientError as e:
            logging.error(f"[Transport] {method} {url} failed: {e}")
            raise TransportError(f"Request to {url} failed: {e}", url=url) from e

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


__all__ = [
    "Transport",
    "AiohttpTransport",
]
