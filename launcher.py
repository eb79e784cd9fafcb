#!/usr/bin/env python3
"""
recx - Main Launcher
Reads newline-delimited targets from stdin and scans them one after another.
Confirmed reflected parameters are printed to stdout, everything else to stderr.
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Iterable, Optional, TextIO

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.resolve()
sys.path.insert(0, str(PROJECT_ROOT))

from recx.config import ScanConfig, USAGE, VERSION, get_config
from recx.logger import TrafficLog, console
from recx.scanner import Scanner, TargetError


def create_parser() -> argparse.ArgumentParser:
    """Single-dash flags, help and version handled by hand."""
    parser = argparse.ArgumentParser(prog="recx", add_help=False, usage="recx [options]")
    parser.add_argument("-h", "-help", "--help", dest="help", action="store_true")
    parser.add_argument("-v", "--version", dest="version", action="store_true")
    parser.add_argument("-strict", dest="strict", action="store_true")
    parser.add_argument("-verbose", dest="verbose", action="store_true")
    parser.add_argument("-log-db", dest="log_db", type=Path, default=None)
    return parser


def usage_error(message: str) -> int:
    console.print(f"error: {message}\n", markup=False)
    print(USAGE)
    return 1


async def run_scans(lines: Iterable[str], config: ScanConfig) -> int:
    """Scan every non-blank line; returns how many targets were processed."""
    traffic_log = TrafficLog(config.log_db) if config.log_db else None
    if traffic_log:
        await traffic_log.connect()

    processed = 0
    try:
        scanner = Scanner(config, traffic_log=traffic_log)
        for line in lines:
            target = line.strip()
            if not target:
                continue
            processed += 1
            await scanner.scan(target)
    finally:
        if traffic_log:
            await traffic_log.close()
    return processed


def main(argv: Optional[list] = None, stdin: Optional[TextIO] = None) -> int:
    args = create_parser().parse_args(argv)

    if args.help:
        print(USAGE)
        return 0

    if args.version:
        print(f"recx version {VERSION}")
        return 0

    stdin = stdin or sys.stdin
    if stdin.isatty():
        return usage_error("no input provided")

    config = get_config(
        strict_context=args.strict or None,
        verbose=args.verbose or None,
        log_db=args.log_db,
    )

    try:
        processed = asyncio.run(run_scans(stdin, config))
    except TargetError as exc:
        return usage_error(str(exc))
    except UnicodeDecodeError as exc:
        return usage_error(f"error reading input: {exc}")

    if processed == 0:
        return usage_error("no valid urls provided")
    return 0


def run():
    """Entry point with interrupt handling."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        console.print("\ninterrupted", markup=False)
        sys.exit(130)


if __name__ == "__main__":
    run()
