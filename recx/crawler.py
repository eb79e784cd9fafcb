"""
recx - Crawl Engine
Recursive same-domain crawler that feeds discovered query parameter names
into the probe queue.
"""

import asyncio
from typing import List, Optional
from urllib.parse import parse_qs, urljoin, urlparse, urlunparse

from bs4 import ParserRejectedMarkup
from rich.console import Console

from recx.config import ScanConfig
from recx.fetcher import Fetcher
from recx.links import extract_links
from recx.logger import log_debug
from recx.state import CrawlState


def query_param_names(url: str) -> List[str]:
    """Distinct query parameter names of ``url``, in order of appearance."""
    try:
        query = urlparse(url).query
    except ValueError:
        return []
    if not query:
        return []
    return [name for name in parse_qs(query, keep_blank_values=True) if name]


def resolve_link(page_url: str, href: str) -> Optional[str]:
    """Absolute http(s) form of ``href`` without fragment, or None if unusable."""
    try:
        parsed = urlparse(urljoin(page_url, href))
    except ValueError:
        return None
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return None
    return urlunparse(parsed._replace(fragment=""))


class Crawler:
    """Bounded recursive crawler for one target host.

    Every page visit claims a slot under the URL cap, holds one fetch permit
    while it checks the visited set and downloads the page, then fans out
    one child task per in-scope link and waits for all of them.
    """

    def __init__(
        self,
        target_host: str,
        fetcher: Fetcher,
        queue: asyncio.Queue,
        config: ScanConfig,
        state: Optional[CrawlState] = None,
        console: Optional[Console] = None,
    ):
        self.target_host = target_host.lower()
        self.fetcher = fetcher
        self.queue = queue
        self.config = config
        self.state = state or CrawlState(config.max_urls)
        self.console = console
        self._permits = asyncio.Semaphore(config.max_workers)

        self.pages_fetched: int = 0
        self.params_queued: int = 0
        self.params_dropped: int = 0
        self.parse_errors: int = 0
        self.crawl_errors: int = 0
        self._stopped = False

    def in_scope(self, url: str) -> bool:
        """Same host as the target, or one of its subdomains."""
        host = (urlparse(url).netloc or "").lower()
        return host == self.target_host or host.endswith("." + self.target_host)

    def emit_params(self, url: str):
        """Queue the URL's parameter names; a full queue drops them."""
        for name in query_param_names(url):
            try:
                self.queue.put_nowait(name)
                self.params_queued += 1
            except asyncio.QueueFull:
                self.params_dropped += 1

    def stop(self):
        """No new pages are visited once stopped; pages already fetched finish quietly."""
        self._stopped = True

    async def crawl(self, url: str, depth: int = 0):
        if self._stopped or depth > self.config.max_depth:
            return
        if not self.state.claim_slot():
            return

        async with self._permits:
            if not self.state.mark_visited(url):
                return
            content = await self.fetcher.fetch(url)

        if content is None:
            return
        self.pages_fetched += 1
        log_debug(f"[crawl] depth={depth} {url}", self.config.verbose, self.console)

        self.emit_params(url)

        try:
            hrefs = extract_links(content)
        except ParserRejectedMarkup as e:
            self.parse_errors += 1
            log_debug(f"[crawl] unparsable page {url}: {e}", self.config.verbose, self.console)
            hrefs = []

        children = []
        for href in hrefs:
            link = resolve_link(url, href)
            if link is None:
                continue
            if depth < self.config.max_depth and self.in_scope(link) and not self._stopped:
                children.append(self.crawl(link, depth + 1))
            self.emit_params(link)

        if not children:
            return
        results = await asyncio.gather(*children, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                self.crawl_errors += 1
                log_debug(f"[crawl] branch below {url} failed: {result!r}", self.config.verbose, self.console)
