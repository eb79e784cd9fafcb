import asyncio
import io
import os
import sys
import tempfile
import time
import unittest
from unittest import mock

from rich.console import Console

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from recx.config import ScanConfig
from recx.logger import TrafficLog
from recx.prober import Prober
from recx.scanner import Scanner, Target, TargetError
from tests.mock_sites import (
    CountingRandom, EchoSite, EndlessSite, GraphSite, RawSite, SilentSite, page, strict_extract_links,
)


def small_config(**kwargs) -> ScanConfig:
    defaults = dict(max_workers=4, min_scan_time=0.0, scan_timeout=5.0, request_timeout=2.0)
    defaults.update(kwargs)
    return ScanConfig(**defaults)


class TestTarget(unittest.TestCase):

    def test_scheme_added(self):
        target = Target.from_input("  example.com  ")
        self.assertEqual(target.url, "https://example.com")
        self.assertEqual(target.host, "example.com")

    def test_existing_scheme_kept(self):
        target = Target.from_input("http://Example.COM:8080/app?x=1")
        self.assertEqual(target.url, "http://Example.COM:8080/app?x=1")
        self.assertEqual(target.host, "example.com:8080")

    def test_unusable_targets(self):
        for raw in ("", "   ", "http://", "https://", "example.com:abc", "http://example.com:99999"):
            with self.subTest(raw=raw):
                with self.assertRaises(TargetError):
                    Target.from_input(raw)


class TestScanner(unittest.IsolatedAsyncioTestCase):

    def make_scanner(self, site, config=None, traffic_log=None):
        self.output = io.StringIO()
        self.stderr = io.StringIO()
        return Scanner(
            config or small_config(),
            output=self.output,
            console=Console(file=self.stderr, soft_wrap=True),
            rng=CountingRandom(),
            transport=site.transport,
            traffic_log=traffic_log,
        )

    async def test_reflected_parameter_reported(self):
        site = EchoSite()
        result = await self.make_scanner(site).scan("http://testserver")

        self.assertFalse(result.timed_out)
        self.assertEqual(len(result.findings), 1)
        self.assertEqual(
            self.output.getvalue(),
            "http://testserver?q=REFLECTED (unfiltered:'<>$|()`;{} )\n",
        )

    async def test_parameter_probed_once(self):
        site = EchoSite(links=["/search?q=1", "/search?q=2&q=3", "/other?q=4"])
        scanner = self.make_scanner(site)
        result = await scanner.scan("http://testserver")

        char_probes = [v for v in site.values("q") if v.startswith("px")]
        self.assertEqual(len(char_probes), 11)
        self.assertEqual(result.status["params_probed"], 1)
        self.assertGreater(result.status["params_queued"], 1)

    async def test_no_parameters_no_output(self):
        site = GraphSite({"/": ["/a"], "/a": []})
        result = await self.make_scanner(site).scan("http://testserver")

        self.assertEqual(result.findings, [])
        self.assertEqual(self.output.getvalue(), "")
        self.assertEqual(result.status["urls_visited"], 2)

    async def test_timeout(self):
        site = SilentSite()
        scanner = self.make_scanner(site, small_config(scan_timeout=0.2))

        started = time.monotonic()
        result = await scanner.scan("http://testserver")

        self.assertLess(time.monotonic() - started, 5)
        self.assertTrue(result.timed_out)
        self.assertIn("timeout reached for: http://testserver", self.stderr.getvalue())
        self.assertEqual(self.output.getvalue(), "")

    async def test_timeout_while_probes_run(self):
        site = EndlessSite(params_per_page=50)
        scanner = self.make_scanner(site, small_config(scan_timeout=0.3, max_workers=50))

        started = time.monotonic()
        result = await asyncio.wait_for(scanner.scan("http://testserver"), 10)

        self.assertTrue(result.timed_out)
        self.assertLess(time.monotonic() - started, 10)
        self.assertGreater(result.status["params_probed"], 0)

        # the next target starts from a clean slate
        echo = EchoSite()
        scanner.transport = echo.transport
        second = await asyncio.wait_for(scanner.scan("http://testserver"), 10)
        self.assertFalse(second.timed_out)
        self.assertEqual([f.parameter for f in second.findings], ["q"])

    async def test_unparsable_page_does_not_abort_scan(self):
        site = RawSite({
            "/": page(links=["/bad?keep=1", "/ok?other=1"]),
            "/bad": "<p>x</p><![ x",
            "/ok": page(),
        })
        scanner = self.make_scanner(site)
        with mock.patch("recx.crawler.extract_links", side_effect=strict_extract_links):
            result = await asyncio.wait_for(scanner.scan("http://testserver"), 10)

        self.assertFalse(result.timed_out)
        self.assertEqual(result.status["parse_errors"], 1)
        self.assertEqual(result.status["params_probed"], 2)
        self.assertIn("/ok", site.paths())

    async def test_minimum_scan_time(self):
        site = GraphSite({"/": []})
        scanner = self.make_scanner(site, small_config(min_scan_time=0.5))

        started = time.monotonic()
        result = await scanner.scan("http://testserver")

        self.assertGreaterEqual(time.monotonic() - started, 0.45)
        self.assertFalse(result.timed_out)

    async def test_worker_errors_do_not_stop_scan(self):
        site = EchoSite()
        scanner = self.make_scanner(site)
        with mock.patch.object(Prober, "probe", side_effect=RuntimeError("boom")):
            result = await scanner.scan("http://testserver")

        self.assertFalse(result.timed_out)
        self.assertEqual(result.findings, [])
        self.assertEqual(result.status["worker_errors"], 1)

    async def test_sequential_scans_are_independent(self):
        site = EchoSite()
        scanner = self.make_scanner(site)
        await scanner.scan("http://testserver")
        second = await scanner.scan("http://testserver")

        self.assertEqual(len(second.findings), 1)
        self.assertEqual(self.output.getvalue().count("REFLECTED"), 2)

    async def test_traffic_log(self):
        with tempfile.TemporaryDirectory() as tmp:
            async with TrafficLog(os.path.join(tmp, "traffic.db")) as traffic_log:
                site = EchoSite()
                await self.make_scanner(site, traffic_log=traffic_log).scan("http://testserver")

                scan = await traffic_log.get_scan(1)
                findings = await traffic_log.get_findings(1)
                requests = await traffic_log.get_http_logs(1, limit=1000)

        self.assertEqual(scan["target"], "http://testserver")
        self.assertEqual(scan["timed_out"], 0)
        self.assertIsNotNone(scan["finished_at"])
        self.assertEqual(len(findings), 1)
        self.assertEqual(findings[0]["parameter"], "q")
        self.assertEqual(findings[0]["unfiltered"], "'<>$|()`;{}")
        self.assertEqual(len(requests), len(site.requests))


if __name__ == '__main__':
    unittest.main()
