"""
recx - Shared Scan State
Check-and-act primitives shared by concurrent crawl tasks and probe workers.

Every mutating method below runs without an ``await``, so on the event loop
each call is indivisible: no other task can observe or change the state
between the check and the act.
"""

from typing import Set


class CrawlState:
    """Visited URLs plus the capped count of URLs claimed for crawling."""

    def __init__(self, max_urls: int):
        self.max_urls = max_urls
        self._visited: Set[str] = set()
        self._claimed: int = 0

    def claim_slot(self) -> bool:
        """Take one slot under the URL cap. False once the cap is reached."""
        if self._claimed >= self.max_urls:
            return False
        self._claimed += 1
        return True

    def mark_visited(self, url: str) -> bool:
        """Insert ``url``; True only for the first caller."""
        if url in self._visited:
            return False
        self._visited.add(url)
        return True

    def has_visited(self, url: str) -> bool:
        return url in self._visited

    @property
    def claimed(self) -> int:
        return self._claimed

    @property
    def visited_count(self) -> int:
        return len(self._visited)


class ParameterLedger:
    """Parameter names already handed to a prober for one target."""

    def __init__(self):
        self._names: Set[str] = set()

    def claim(self, name: str) -> bool:
        """Mark ``name`` as processed; True only for the first caller."""
        if name in self._names:
            return False
        self._names.add(name)
        return True

    def __contains__(self, name: str) -> bool:
        return name in self._names

    def __len__(self) -> int:
        return len(self._names)
