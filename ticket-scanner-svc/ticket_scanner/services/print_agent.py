from __future__ import annotations
import httpx

from ..core.errors import PrintAgentError
from ..core.logging import get_logger

logger = get_logger(__name__)


class PrintAgent:
    """Client for the local ESC/POS print agent.

    ``GET /health`` answers ``{"ok": bool}``; ``POST /print`` takes
    ``{"lines": [...], "cut": bool, "drawer": bool}`` and a static token header.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        health_timeout: float = 1.0,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.health_timeout = health_timeout
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, transport=self._transport)

    async def is_available(self) -> bool:
        try:
            async with self._client() as client:
                r = await client.get("/health", timeout=self.health_timeout)
            if r.status_code != 200:
                return False
            return bool(r.json().get("ok"))
        except (httpx.HTTPError, ValueError):
            return False

    async def print_lines(self, lines: list[str], *, cut: bool = True, drawer: bool = False) -> None:
        if not lines:
            raise ValueError("lines must be a non-empty list")
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["X-Print-Token"] = self.token
        payload = {"lines": lines, "cut": cut, "drawer": drawer}
        try:
            async with self._client() as client:
                r = await client.post("/print", headers=headers, json=payload, timeout=self.timeout)
        except httpx.HTTPError as exc:
            raise PrintAgentError(f"print request failed: {exc}") from exc
        if r.status_code >= 400:
            raise PrintAgentError(f"print failed {r.status_code}: {r.text or '<no details>'}")

    async def try_print(self, lines: list[str], *, cut: bool = True, drawer: bool = False) -> bool:
        """Print when the agent is up. Returns False when printing was skipped."""
        if not await self.is_available():
            logger.info("Print agent not reachable at %s, skipping receipt", self.base_url)
            return False
        await self.print_lines(lines, cut=cut, drawer=drawer)
        return True
