from __future__ import annotations
import httpx

from ..core.errors import RelayError
from ..core.logging import get_logger

logger = get_logger(__name__)


class Relay:
    """Door/gate relay on the local network, opened with a plain GET."""

    def __init__(self, url: str, *, timeout: float = 3.0, transport: httpx.AsyncBaseTransport | None = None):
        self.url = url
        self.timeout = timeout
        self._transport = transport

    async def trigger(self) -> None:
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                r = await client.get(self.url, timeout=self.timeout)
        except httpx.HTTPError as exc:
            raise RelayError(f"relay unreachable: {exc}") from exc
        if r.status_code >= 400:
            raise RelayError(f"relay answered {r.status_code}")
        logger.info("Relay triggered - door/gate opened")
