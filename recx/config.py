"""
recx - Configuration Management
Scan limits, client defaults and CLI text shared by every component.
"""

import os
from pathlib import Path
from dataclasses import dataclass, fields, replace
from typing import List, Optional


VERSION = "1.0"

USAGE = """usage: recx [options]

crawler for finding reflected parameters!
version: v1.0

options:
  -h, -help    show help message
  -v           show version
  -strict      only report reflections outside href/src/script/meta/comment context
  -verbose     print crawl and probe diagnostics to stderr
  -log-db      record http traffic and findings in an sqlite file

use cases:
  echo "example.com" | recx
  cat urls.txt | recx
  subfinder -d example.com | recx | nuclei -t xss-reflected.yaml
"""

# Characters checked for raw survival once a parameter is confirmed reflected
SPECIAL_CHARS = "'<>$|()`;{}"

USER_AGENTS: List[str] = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:89.0) Gecko/20100101 Firefox/89.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/14.1.1 Safari/605.1.15",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Edge/91.0.864.59",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36",
    "Mozilla/5.0 (iPhone; CPU iPhone OS 14_6 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/14.1.1 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (iPad; CPU OS 14_6 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/14.0 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (Android 11; Mobile; rv:68.0) Gecko/68.0 Firefox/88.0",
    "Mozilla/5.0 (Windows NT 10.0; WOW64; Trident/7.0; rv:11.0) like Gecko",
    "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)",
]

ENV_PREFIX = "RECX_"


@dataclass
class ScanConfig:
    """Limits and switches for one scanner run."""
    max_workers: int = 200
    request_timeout: float = 10.0
    queue_size: int = 50000
    # Requests per redirect chain, first one included; the last response is used as-is
    max_redirects: int = 3
    max_depth: int = 5
    max_urls: int = 10000
    scan_timeout: float = 60.0
    min_scan_time: float = 5.0
    max_body_bytes: int = 2 * 1024 * 1024
    # Only report reflections that land outside attribute/script/comment context
    strict_context: bool = False
    verbose: bool = False
    log_db: Optional[Path] = None


def _coerce(raw: str, current):
    """Convert an environment string to the type of the current default."""
    if isinstance(current, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    return Path(raw).expanduser()


def load_env_overrides(environ=None) -> dict:
    """Read RECX_* environment variables matching ScanConfig fields.

    Values that do not parse are ignored so a stray variable never aborts a run.
    """
    environ = os.environ if environ is None else environ
    defaults = ScanConfig()
    overrides = {}
    for f in fields(ScanConfig):
        raw = environ.get(ENV_PREFIX + f.name.upper(), "").strip()
        if not raw:
            continue
        try:
            overrides[f.name] = _coerce(raw, getattr(defaults, f.name))
        except ValueError:
            continue
    return overrides


def get_config(environ=None, **overrides) -> ScanConfig:
    """Get the scan configuration: defaults, then environment, then explicit overrides."""
    cfg = replace(ScanConfig(), **load_env_overrides(environ))
    explicit = {k: v for k, v in overrides.items() if v is not None}
    if explicit:
        cfg = replace(cfg, **explicit)
    return cfg
