#!/usr/bin/env python3
"""Print the current port demand as a JSON envelope.

Usage:
    python run.py                          # scrape both portal pages
    python run.py --prevision-file p.html --chapero-file c.html
                                           # parse saved pages instead
    python run.py --diagnose ...           # include the strategy behind each field
    python run.py --status                 # include the cache state after the run
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

import config
from cache import DemandCache, NoDataError
from extract import diagnose, extract_snapshot
from fetch import FetchError, scrape_snapshot
from present import error_envelope, success_envelope, to_json

log = logging.getLogger(__name__)


def _file_fetcher(prevision_path: Path, chapero_path: Path):
    """Fetch function that reads saved pages from disk."""
    def fetch():
        return extract_snapshot(
            prevision_path.read_text(encoding="utf-8", errors="replace"),
            chapero_path.read_text(encoding="utf-8", errors="replace"),
        )
    return fetch


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Port crane/vehicle demand scraper")
    parser.add_argument("--prevision-file", type=Path, default=None, help="Saved prevision page HTML")
    parser.add_argument("--chapero-file", type=Path, default=None, help="Saved chapero page HTML")
    parser.add_argument("--diagnose", action="store_true", help="Report the strategy behind each field (needs both files)")
    parser.add_argument("--status", action="store_true", help="Include the cache state in the output")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    if (args.prevision_file is None) != (args.chapero_file is None):
        parser.error("--prevision-file and --chapero-file must be given together")
    offline = args.prevision_file is not None
    if args.diagnose and not offline:
        parser.error("--diagnose needs --prevision-file and --chapero-file")

    if offline:
        fetch = _file_fetcher(args.prevision_file, args.chapero_file)
        log.info("Reading saved pages %s and %s", args.prevision_file, args.chapero_file)
    else:
        fetch = scrape_snapshot
        log.info("Scraping %s and %s", config.PREVISION_URL, config.CHAPERO_URL)

    cache = DemandCache(fetch)
    try:
        cache.refresh()
        result = cache.get()
    except (NoDataError, FetchError, OSError) as e:
        log.error("No demand data: %s", e)
        print(to_json(error_envelope(e)))
        return 1

    envelope = success_envelope(result)
    if args.diagnose:
        envelope["strategies"] = diagnose(
            args.prevision_file.read_text(encoding="utf-8", errors="replace"),
            args.chapero_file.read_text(encoding="utf-8", errors="replace"),
        )
    if args.status:
        envelope["cache"] = cache.status()
    print(to_json(envelope))
    return 0


if __name__ == "__main__":
    sys.exit(main())
