"""
HTTP transport used to talk to the identity provider and Gamebrain.

The broker only depends on the abstract ``Transport``; ``HttpxTransport`` is the
implementation wired in by the application.
"""

import abc
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

import httpx

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """Connection-level failure: DNS, refused connection, timeout, reset."""


@dataclass(frozen=True)
class TransportResponse:
    status_code: int
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class Transport(abc.ABC):
    """Minimal async POST capability."""

    @abc.abstractmethod
    async def post(
        self, url: str, headers: Dict[str, str], body: Union[str, bytes]
    ) -> TransportResponse:
        """
        Send a POST request.

        Raises:
            TransportError: If no HTTP response was received
        """

    async def aclose(self) -> None:
        """Release any pooled connections."""


class HttpxTransport(Transport):
    """
    Transport backed by a shared ``httpx.AsyncClient``.
    The client is created lazily so the transport can be built outside an event loop.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def post(
        self, url: str, headers: Dict[str, str], body: Union[str, bytes]
    ) -> TransportResponse:
        content = body.encode("utf-8") if isinstance(body, str) else body
        try:
            response = await self._get_client().post(
                url, headers=headers, content=content, timeout=self.timeout
            )
        except httpx.TransportError as e:
            # Covers timeouts, connect and network errors
            logger.warning(f"POST {url} failed: {e.__class__.__name__}: {str(e)}")
            raise TransportError(f"{e.__class__.__name__}: {str(e)}") from e

        return TransportResponse(
            status_code=response.status_code,
            body=response.content,
            headers=dict(response.headers),
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
