"""
recx - Fetch Client
Single GET primitive used by the crawler and the prober.
"""

import asyncio
import secrets
import time
from typing import Awaitable, Callable, Dict, Optional, Sequence

import httpx
from rich.console import Console

from recx.config import ScanConfig, USER_AGENTS
from recx.logger import log_debug


RequestHook = Callable[..., Awaitable]


class RandomSource:
    """Randomness used for probe markers and user-agent rotation.

    Tests substitute a deterministic subclass to assert exact probe URLs.
    """

    def token_hex(self, nbytes: int) -> str:
        return secrets.token_hex(nbytes)

    def choice(self, items: Sequence[str]) -> str:
        return secrets.choice(items)


class Fetcher:
    """GET-only HTTP client with browser-like headers and hard limits.

    ``fetch`` never raises for transport problems: it returns ``None`` and
    counts the error, so callers simply abandon that URL or probe.
    """

    def __init__(
        self,
        config: ScanConfig,
        rng: Optional[RandomSource] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        on_request: Optional[RequestHook] = None,
        console: Optional[Console] = None,
    ):
        self.config = config
        self.rng = rng or RandomSource()
        self.on_request = on_request
        self.console = console
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

        self.requests_sent: int = 0
        self.errors_count: int = 0

    async def open(self):
        """Create the pooled client."""
        self._client = httpx.AsyncClient(
            verify=False,
            # Redirects are followed by hand so the last response can be kept
            follow_redirects=False,
            timeout=httpx.Timeout(self.config.request_timeout, pool=None),
            limits=httpx.Limits(
                max_connections=max(1, self.config.max_workers // 2),
                max_keepalive_connections=max(1, self.config.max_workers // 2),
                keepalive_expiry=30.0,
            ),
            transport=self._transport,
        )

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, *exc):
        await self.close()

    def _headers(self) -> Dict[str, str]:
        return {
            "User-Agent": self.rng.choice(USER_AGENTS),
            "Accept": "*/*",
            "Accept-Language": "en-US,en;q=0.9",
            "Connection": "keep-alive",
        }

    async def fetch(self, url: str) -> Optional[str]:
        """GET ``url`` and return the (size-capped) body, or ``None`` on error."""
        if self._client is None:
            # Closed at scan shutdown; stragglers fall through without touching the network
            return None
        started = time.perf_counter()
        status_code = None
        error = ""
        body = None
        self.requests_sent += 1
        try:
            status_code, raw = await asyncio.wait_for(
                self._get(url), timeout=self.config.request_timeout
            )
            body = raw.decode("utf-8", errors="replace")
        except asyncio.TimeoutError:
            error = f"timeout after {self.config.request_timeout}s"
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            error = f"{type(exc).__name__}: {str(exc)[:180]}"

        if error:
            self.errors_count += 1
            log_debug(f"[fetch] {url}: {error}", self.config.verbose, self.console)

        if self.on_request:
            await self.on_request(
                url=url,
                status_code=status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
                error=error,
            )
        return body

    async def _get(self, url: str):
        client = self._client
        request = client.build_request("GET", url, headers=self._headers())
        sent = 0
        while True:
            response = await client.send(request, stream=True)
            sent += 1
            try:
                if response.next_request is not None and sent < self.config.max_redirects:
                    request = response.next_request
                    continue
                return response.status_code, await self._read_limited(response)
            finally:
                await response.aclose()

    async def _read_limited(self, response: httpx.Response) -> bytes:
        limit = self.config.max_body_bytes
        chunks = []
        size = 0
        async for chunk in response.aiter_bytes():
            chunk = chunk[:limit - size]
            chunks.append(chunk)
            size += len(chunk)
            if size >= limit:
                break
        return b"".join(chunks)
