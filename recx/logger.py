"""
recx - Logging
Stderr diagnostics console and the optional SQLite traffic log.
"""

import aiosqlite
import json
import time
from pathlib import Path
from typing import Optional, List, Dict, Any

from rich.console import Console


# Findings go to plain stdout; everything diagnostic goes here.
console = Console(stderr=True, soft_wrap=True, highlight=False)


def log_debug(message: str, enabled: bool, out: Optional[Console] = None):
    """Print a dim diagnostic line when verbose output is enabled."""
    if enabled:
        (out or console).print(message, style="dim", markup=False)


SCHEMA = """
CREATE TABLE IF NOT EXISTS scans (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    target TEXT NOT NULL,
    started_at REAL NOT NULL,
    finished_at REAL,
    timed_out INTEGER DEFAULT 0,
    stats TEXT DEFAULT '{}'
);

CREATE TABLE IF NOT EXISTS http_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    scan_id INTEGER NOT NULL,
    timestamp REAL NOT NULL,
    url TEXT NOT NULL,
    status_code INTEGER,
    duration_ms REAL,
    error TEXT DEFAULT '',
    FOREIGN KEY (scan_id) REFERENCES scans(id)
);

CREATE TABLE IF NOT EXISTS findings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    scan_id INTEGER NOT NULL,
    timestamp REAL NOT NULL,
    url TEXT NOT NULL,
    parameter TEXT NOT NULL,
    unfiltered TEXT NOT NULL,
    FOREIGN KEY (scan_id) REFERENCES scans(id)
);

CREATE INDEX IF NOT EXISTS idx_http_log_scan ON http_log(scan_id);
CREATE INDEX IF NOT EXISTS idx_findings_scan ON findings(scan_id);
"""


class TrafficLog:
    """Async SQLite store for requests and findings of each scanned target."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._db: Optional[aiosqlite.Connection] = None

    async def connect(self):
        """Initialize database connection and schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(str(self.db_path))
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._db.execute("PRAGMA foreign_keys=ON")
        await self._db.executescript(SCHEMA)
        await self._db.commit()

    async def close(self):
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, *exc):
        await self.close()

    # ── Scans ───────────────────────────────────────────────────

    async def start_scan(self, target: str) -> int:
        """Open a scan row for one target."""
        cursor = await self._db.execute(
            "INSERT INTO scans (target, started_at) VALUES (?, ?)",
            (target, time.time())
        )
        await self._db.commit()
        return cursor.lastrowid

    async def finish_scan(self, scan_id: int, timed_out: bool, stats: Optional[Dict[str, Any]] = None):
        """Close a scan row with its outcome."""
        await self._db.execute(
            "UPDATE scans SET finished_at = ?, timed_out = ?, stats = ? WHERE id = ?",
            (time.time(), int(timed_out), json.dumps(stats or {}), scan_id)
        )
        await self._db.commit()

    async def get_scan(self, scan_id: int) -> Optional[Dict]:
        async with self._db.execute("SELECT * FROM scans WHERE id = ?", (scan_id,)) as cursor:
            row = await cursor.fetchone()
            return dict(row) if row else None

    # ── HTTP Logging ────────────────────────────────────────────

    async def log_request(self, scan_id: int, url: str,
                          status_code: Optional[int] = None,
                          duration_ms: float = 0,
                          error: str = "") -> int:
        """Log one fetch and its outcome."""
        cursor = await self._db.execute(
            """INSERT INTO http_log
               (scan_id, timestamp, url, status_code, duration_ms, error)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (scan_id, time.time(), url, status_code, duration_ms, error[:500])
        )
        await self._db.commit()
        return cursor.lastrowid

    async def get_http_logs(self, scan_id: int, limit: int = 200) -> List[Dict]:
        """Get HTTP logs of a scan, oldest first."""
        async with self._db.execute(
            "SELECT * FROM http_log WHERE scan_id = ? ORDER BY id ASC LIMIT ?",
            (scan_id, limit)
        ) as cursor:
            rows = await cursor.fetchall()
            return [dict(r) for r in rows]

    # ── Findings ────────────────────────────────────────────────

    async def log_finding(self, scan_id: int, finding) -> int:
        """Record a confirmed reflected parameter."""
        cursor = await self._db.execute(
            """INSERT INTO findings (scan_id, timestamp, url, parameter, unfiltered)
               VALUES (?, ?, ?, ?, ?)""",
            (scan_id, time.time(), finding.base_url, finding.parameter,
             "".join(finding.unfiltered))
        )
        await self._db.commit()
        return cursor.lastrowid

    async def get_findings(self, scan_id: int) -> List[Dict]:
        """Get all findings for a scan."""
        async with self._db.execute(
            "SELECT * FROM findings WHERE scan_id = ? ORDER BY id ASC",
            (scan_id,)
        ) as cursor:
            rows = await cursor.fetchall()
            return [dict(r) for r in rows]
