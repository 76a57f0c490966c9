"""
Probe transports.

``send`` returns the response body or raises ``TransportFailure``;
``signal`` is the best-effort fallback channel (did the URL load as a
resource at all?) consulted only after ``send`` has given up.
"""

from abc import ABC, abstractmethod
from typing import Optional

import httpx

from xssprobe.core.config import settings
from xssprobe.core.exceptions import ProbeTimeout, TransportFailure
from xssprobe.core.models import ProbeRequest
from xssprobe.utils.logger import get_logger

logger = get_logger("core.transport")


class ProbeTransport(ABC):

    @abstractmethod
    async def send(self, request: ProbeRequest) -> str:
        """Deliver the probe and return the response body."""

    async def signal(self, request: ProbeRequest) -> bool:
        """Fallback signal; transports without one report nothing."""
        return False

    async def close(self) -> None:
        return None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()


class HttpxTransport(ProbeTransport):
    """
    httpx-backed transport.

    5xx responses are treated as transport failures so the dispatcher retries
    them; any other status returns its body for analysis.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        user_agent: Optional[str] = None,
        verify: bool = True,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.timeout = timeout or settings.PROBE_TIMEOUT
        self.user_agent = user_agent or settings.USER_AGENT
        self.verify = verify
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                verify=self.verify,
                timeout=httpx.Timeout(self.timeout, connect=min(self.timeout, 10.0)),
                follow_redirects=True,
                headers={
                    "User-Agent": self.user_agent,
                    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
                },
            )
        return self._client

    async def send(self, request: ProbeRequest) -> str:
        try:
            response = await self.client.request(
                request.method,
                request.url,
                headers=request.headers,
                content=request.body.encode("utf-8") if request.body is not None else None,
            )
        except httpx.TimeoutException as e:
            raise ProbeTimeout(f"Probe timed out: {e}", timeout_seconds=self.timeout, url=request.url, cause=e)
        except httpx.RequestError as e:
            raise TransportFailure(f"Probe failed: {e}", url=request.url, cause=e)

        if response.status_code >= 500:
            raise TransportFailure(
                f"Server error {response.status_code}", url=request.url, status=response.status_code
            )
        return response.text

    async def signal(self, request: ProbeRequest) -> bool:
        """True when the probe URL loads as an image resource."""
        try:
            response = await self.client.get(request.url, headers=request.headers)
        except httpx.RequestError as e:
            logger.debug(f"Fallback signal failed for {request.url}: {e}")
            return False
        content_type = response.headers.get("content-type", "")
        return response.status_code < 400 and content_type.startswith("image/")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
