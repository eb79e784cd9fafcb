"""
recx - Scan Orchestrator
Per-target lifecycle: crawl in the background, probe discovered parameters
with a fixed worker pool, bound the whole scan in time.
"""

import asyncio
import functools
import sys
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, TextIO
from urllib.parse import urlparse

import httpx
from rich.console import Console

from recx.config import ScanConfig, get_config
from recx.crawler import Crawler
from recx.fetcher import Fetcher, RandomSource
from recx.logger import TrafficLog, console as default_console, log_debug
from recx.prober import Finding, Prober
from recx.state import ParameterLedger


class TargetError(ValueError):
    """Raised when an input line cannot be turned into a scan target."""


@dataclass(frozen=True)
class Target:
    url: str
    host: str

    @classmethod
    def from_input(cls, raw: str) -> "Target":
        url = (raw or "").strip()
        if not url:
            raise TargetError("empty target")
        if not url.startswith(("https://", "http://")):
            url = "https://" + url
        try:
            parsed = urlparse(url)
            # Raises for a non-numeric or out-of-range port
            parsed.port
        except ValueError as exc:
            raise TargetError(f"invalid url: {url}") from exc
        if not parsed.netloc or not parsed.hostname:
            raise TargetError(f"invalid url: {url}")
        return cls(url=url, host=parsed.netloc.lower())


@dataclass
class ScanResult:
    target: str
    findings: List[Finding] = field(default_factory=list)
    timed_out: bool = False
    elapsed_s: float = 0.0
    status: Dict[str, Any] = field(default_factory=dict)


class Scanner:
    """Runs one scan per target, sequentially."""

    def __init__(
        self,
        config: Optional[ScanConfig] = None,
        output: Optional[TextIO] = None,
        console: Optional[Console] = None,
        rng: Optional[RandomSource] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        traffic_log: Optional[TrafficLog] = None,
    ):
        self.config = config or get_config()
        self.output = output
        self.console = console or default_console
        self.rng = rng or RandomSource()
        self.transport = transport
        self.traffic_log = traffic_log

        self._started_at: float = 0.0
        self._crawler: Optional[Crawler] = None
        self._prober: Optional[Prober] = None
        self._fetcher: Optional[Fetcher] = None
        self._ledger = ParameterLedger()
        self._findings: List[Finding] = []
        self._worker_errors: int = 0
        self._stopping: Optional[asyncio.Event] = None

    def status(self) -> dict:
        elapsed_s = max(0.0, time.monotonic() - self._started_at) if self._started_at else 0.0
        crawler, fetcher = self._crawler, self._fetcher
        return {
            "urls_claimed": crawler.state.claimed if crawler else 0,
            "urls_visited": crawler.state.visited_count if crawler else 0,
            "pages_fetched": crawler.pages_fetched if crawler else 0,
            "params_queued": crawler.params_queued if crawler else 0,
            "params_dropped": crawler.params_dropped if crawler else 0,
            "params_probed": len(self._ledger),
            "requests_sent": fetcher.requests_sent if fetcher else 0,
            "errors_count": fetcher.errors_count if fetcher else 0,
            "parse_errors": crawler.parse_errors if crawler else 0,
            "crawl_errors": crawler.crawl_errors if crawler else 0,
            "worker_errors": self._worker_errors,
            "findings_count": len(self._findings),
            "elapsed_s": round(elapsed_s, 2),
        }

    async def scan(self, raw_target: str) -> ScanResult:
        """Scan one target to completion or timeout."""
        target = Target.from_input(raw_target)

        self._started_at = time.monotonic()
        self._ledger = ParameterLedger()
        self._findings = []
        self._worker_errors = 0
        self._stopping = asyncio.Event()

        scan_id = None
        on_request = None
        if self.traffic_log:
            scan_id = await self.traffic_log.start_scan(target.url)
            on_request = functools.partial(self.traffic_log.log_request, scan_id)

        queue: asyncio.Queue = asyncio.Queue(maxsize=self.config.queue_size)
        timed_out = False

        async with Fetcher(self.config, rng=self.rng, transport=self.transport,
                           on_request=on_request, console=self.console) as fetcher:
            self._fetcher = fetcher
            self._crawler = Crawler(target.host, fetcher, queue, self.config, console=self.console)
            self._prober = Prober(fetcher, self.config, rng=self.rng, console=self.console)

            crawl_task = asyncio.create_task(self._crawler.crawl(target.url, 0))
            workers = [
                asyncio.create_task(self._worker(queue, target, scan_id))
                for _ in range(self.config.max_workers)
            ]

            try:
                try:
                    await asyncio.wait_for(asyncio.shield(crawl_task), timeout=self.config.scan_timeout)
                except asyncio.TimeoutError:
                    timed_out = True
                    self.console.print(f"timeout reached for: {target.url}", markup=False)
                except Exception as e:
                    self._crawler.crawl_errors += 1
                    log_debug(f"[crawl] {target.url} failed: {e!r}", self.config.verbose, self.console)

                if not timed_out:
                    elapsed = time.monotonic() - self._started_at
                    if elapsed < self.config.min_scan_time:
                        await asyncio.sleep(self.config.min_scan_time - elapsed)
                    await queue.join()
            finally:
                # Nothing from this target may keep running into the next one
                self._stopping.set()
                self._crawler.stop()
                tasks = [crawl_task, *workers]
                for task in tasks:
                    task.cancel()
                done, pending = await asyncio.wait(tasks, timeout=self.config.request_timeout)
                for task in done:
                    # Crawl failures were counted above; consume so the loop does not report them
                    if not task.cancelled():
                        task.exception()
                if pending:
                    log_debug(f"[scan] {target.url}: abandoned {len(pending)} tasks at shutdown",
                              self.config.verbose, self.console)

        status = self.status()
        log_debug(f"[scan] {target.url}: {status}", self.config.verbose, self.console)
        if self.traffic_log:
            await self.traffic_log.finish_scan(scan_id, timed_out, status)

        return ScanResult(
            target=target.url,
            findings=list(self._findings),
            timed_out=timed_out,
            elapsed_s=status["elapsed_s"],
            status=status,
        )

    async def _worker(self, queue: asyncio.Queue, target: Target, scan_id: Optional[int]):
        # Bound to this scan's objects so a straggler cannot touch the next target
        prober, ledger, stopping = self._prober, self._ledger, self._stopping
        # Checked before every get: a cancellation swallowed mid-probe still ends the loop
        while not stopping.is_set():
            parameter = await queue.get()
            try:
                if ledger.claim(parameter):
                    finding = await prober.probe(target.url, parameter)
                    if finding:
                        await self._emit(finding, scan_id)
            except Exception as e:
                self._worker_errors += 1
                log_debug(f"[probe] error on {parameter}: {e}", self.config.verbose, self.console)
            finally:
                queue.task_done()

    async def _emit(self, finding: Finding, scan_id: Optional[int]):
        self._findings.append(finding)
        out = self.output or sys.stdout
        print(finding.line(), file=out, flush=True)
        if self.traffic_log:
            await self.traffic_log.log_finding(scan_id, finding)
