#!/usr/bin/env python3
"""
Legal Link Scanner CLI

Finds privacy policy and terms links on a page and reports them to a
consumer, either once for a static document or continuously while a live
page keeps changing.

Usage:
    python link_scanner.py extract <file_or_url> [--base-url <url>]
    python link_scanner.py watch <url> [--duration <s>] [--consumer-url <url>]
                                       [--profile <yaml>] [--visible]
"""

import argparse
import asyncio
import json
import logging
import sys

from browser_document import open_browser_document
from delivery import HttpConsumer, MemoryConsumer
from extractors.legal_links import LinkExtractor
from link_watcher import build_watcher
from page_document import load_html_source
from profile_loader import ScanProfile, load_profile

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def output_json(data):
    """Print JSON to stdout."""
    print(json.dumps(data, indent=2, ensure_ascii=False))


def _records_payload(records):
    return [r.model_dump(mode="json", by_alias=True, exclude_none=True) for r in records]


# --- Commands ---


def cmd_extract(args):
    document = load_html_source(args.source, base_url=args.base_url)
    snapshot = asyncio.run(document.snapshot())

    profile = load_profile(args.profile) if args.profile else ScanProfile()
    extractor = LinkExtractor(patterns=profile.patterns, fallback_title=profile.fallback_title)
    records = extractor.extract(snapshot)

    output_json({"source": args.source, "base_url": snapshot.base_url,
                 "anchors": len(snapshot.anchors), "links": _records_payload(records)})


async def _watch(args):
    profile = load_profile(args.profile) if args.profile else ScanProfile()
    if args.visible:
        profile.headless = False

    consumer_url = args.consumer_url or profile.consumer_url
    consumer = HttpConsumer(consumer_url) if consumer_url else MemoryConsumer()

    document = await open_browser_document(args.url, headless=profile.headless)
    watcher = build_watcher(document, consumer, profile)
    try:
        await watcher.start()
        await asyncio.sleep(args.duration)
    finally:
        watcher.stop()
        await watcher.drain()
        await document.close()

    result = {
        "url": args.url,
        "scans": watcher.scan_count,
        "links_found": watcher.links_found,
        "deliveries": [
            {"delivered": o.delivered, "attempts": o.attempts, "error": o.error}
            for o in watcher.delivery_outcomes
        ],
    }
    if isinstance(consumer, MemoryConsumer):
        result["links"] = _records_payload(consumer.links)
    return result


def cmd_watch(args):
    output_json(asyncio.run(_watch(args)))


def main():
    parser = argparse.ArgumentParser(description="Legal Link Scanner CLI")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    # extract
    p_ext = sub.add_parser("extract", help="Scan a static HTML file or URL once")
    p_ext.add_argument("source", help="HTML file path or http(s) URL")
    p_ext.add_argument("--base-url", help="Base URL for relative links")
    p_ext.add_argument("--profile", help="YAML scan profile")

    # watch
    p_watch = sub.add_parser("watch", help="Watch a live page for legal links")
    p_watch.add_argument("url")
    p_watch.add_argument("--duration", type=float, default=30.0, help="Seconds to keep watching")
    p_watch.add_argument("--consumer-url", help="Endpoint receiving link batches")
    p_watch.add_argument("--profile", help="YAML scan profile")
    p_watch.add_argument("--visible", action="store_true", help="Run with visible browser")

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    commands = {
        "extract": cmd_extract,
        "watch": cmd_watch,
    }

    try:
        commands[args.command](args)
    except Exception as e:
        output_json({"error": str(e), "command": args.command})
        sys.exit(1)


if __name__ == "__main__":
    main()
