"""
HTTP transport capability for replaying signed requests to STS.

The verifier depends only on the ``HttpTransport`` protocol. ``HttpxTransport``
is the production variant; tests supply scripted doubles.
"""

import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional, Protocol

import httpx

from .errors import TransportError, VerificationTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class TransportResponse:
    """Status, body and headers of a replayed request."""
    status_code: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def content_type(self) -> str:
        for name, value in self.headers.items():
            if name.lower() == "content-type":
                return value
        return ""


class HttpTransport(Protocol):
    """Send one HTTP request and return its response."""

    async def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: bytes,
        timeout: float,
    ) -> TransportResponse:
        ...


class HttpxTransport:
    """
    ``HttpTransport`` over ``httpx.AsyncClient``.

    Headers are sent exactly as given, including ``Host``. httpx adds
    ``Content-Length`` and a few unsigned headers of its own, which SigV4
    ignores because they are not in the signed header list.
    """

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        """
        Initialize the transport.

        Args:
            client: Shared client to use; a short-lived client per request when None
        """
        self._client = client

    async def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: bytes,
        timeout: float,
    ) -> TransportResponse:
        try:
            if self._client is not None:
                response = await self._client.request(
                    method, url, headers=dict(headers), content=body, timeout=timeout,
                )
            else:
                async with httpx.AsyncClient(follow_redirects=False) as client:
                    response = await client.request(
                        method, url, headers=dict(headers), content=body, timeout=timeout,
                    )
        except httpx.TimeoutException as e:
            logger.warning(f"STS replay to {url} timed out: {e}")
            raise VerificationTimeoutError(timeout) from e
        except httpx.HTTPError as e:
            logger.warning(f"STS replay to {url} failed: {e}")
            raise TransportError(f"STS replay failed: {e}") from e

        return TransportResponse(
            status_code=response.status_code,
            body=response.content,
            headers=dict(response.headers),
        )
