"""
recx - Reflection Prober
Confirms that a parameter is echoed into the response with two independent
random markers, then checks which special characters come back unfiltered.
"""

from dataclasses import dataclass
from typing import List, Optional, Tuple

from rich.console import Console

from recx.config import ScanConfig, SPECIAL_CHARS
from recx.fetcher import Fetcher, RandomSource
from recx.logger import log_debug


MARKER_BYTES = 12
CHAR_MARKER_BYTES = 4
CONTEXT_WINDOW = 100


@dataclass(frozen=True)
class Finding:
    """A parameter confirmed reflected with at least one raw special character."""

    base_url: str
    parameter: str
    unfiltered: Tuple[str, ...]

    def line(self) -> str:
        return f"{self.base_url}?{self.parameter}=REFLECTED (unfiltered:{''.join(self.unfiltered)} )"

    def to_dict(self) -> dict:
        return {
            "url": self.base_url,
            "parameter": self.parameter,
            "unfiltered": "".join(self.unfiltered),
        }


def build_probe_url(base_url: str, parameter: str, value: str) -> str:
    return f"{base_url}?{parameter}={value}"


def is_valid_reflection_context(content: str, marker: str) -> bool:
    """False when the marker sits in an href/src value, script, meta tag or comment."""
    idx = content.find(marker)
    if idx == -1:
        return False

    start = max(0, idx - CONTEXT_WINDOW)
    end = min(len(content), idx + len(marker) + CONTEXT_WINDOW)
    context = content[start:end]

    if "href=" in context or "src=" in context:
        return False

    lowered = context.lower()
    if "<script" in lowered or "<meta" in lowered:
        return False

    if "<!--" in context or "-->" in context:
        return False

    return True


class Prober:
    """Runs the reflection protocol for (base URL, parameter) pairs."""

    def __init__(
        self,
        fetcher: Fetcher,
        config: ScanConfig,
        rng: Optional[RandomSource] = None,
        console: Optional[Console] = None,
    ):
        self.fetcher = fetcher
        self.config = config
        self.rng = rng or fetcher.rng
        self.console = console
        self.probes_run: int = 0

    def new_marker(self) -> str:
        return self.rng.token_hex(MARKER_BYTES)

    def char_marker(self, char: str) -> str:
        return f"px{self.rng.token_hex(CHAR_MARKER_BYTES)}{char}{self.rng.token_hex(CHAR_MARKER_BYTES)}"

    async def _reflects(self, base_url: str, parameter: str, marker: str) -> Optional[str]:
        """Body of the probe response when it contains ``marker`` verbatim."""
        content = await self.fetcher.fetch(build_probe_url(base_url, parameter, marker))
        if content is None or marker not in content:
            return None
        return content

    async def probe(self, base_url: str, parameter: str) -> Optional[Finding]:
        self.probes_run += 1

        first = self.new_marker()
        if await self._reflects(base_url, parameter, first) is None:
            return None

        # A second fresh marker rules out static or cached content matching once
        second = self.new_marker()
        content = await self._reflects(base_url, parameter, second)
        if content is None:
            log_debug(f"[probe] {parameter}: first marker only, discarded", self.config.verbose, self.console)
            return None

        if self.config.strict_context and not is_valid_reflection_context(content, second):
            log_debug(f"[probe] {parameter}: reflected in non-exploitable context", self.config.verbose, self.console)
            return None

        unfiltered = await self.check_unfiltered_chars(base_url, parameter)
        if not unfiltered:
            log_debug(f"[probe] {parameter}: reflected, all characters filtered", self.config.verbose, self.console)
            return None

        return Finding(base_url=base_url, parameter=parameter, unfiltered=tuple(unfiltered))

    async def check_unfiltered_chars(self, base_url: str, parameter: str) -> List[str]:
        unfiltered: List[str] = []
        for char in SPECIAL_CHARS:
            marker = self.char_marker(char)
            content = await self.fetcher.fetch(build_probe_url(base_url, parameter, marker))
            if content is None:
                continue
            if marker in content:
                unfiltered.append(char)
        return unfiltered
