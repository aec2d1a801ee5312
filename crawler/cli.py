"""Command line entry points for running the ingestion pipeline by hand."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from typing import List, Optional

from backend.db import init_db
from backend.settings import load_settings, setup_logging
from .errors import FeedNotFound, FetchError, ParseError
from .ingest import FeedIngestor

logger = logging.getLogger(__name__)


def _print(payload) -> None:
	print(json.dumps(payload, default=str, ensure_ascii=False, indent=2))


def build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(prog="feed-ingest", description="Fetch and store RSS/Atom feeds")
	sub = parser.add_subparsers(dest="command", required=True)
	sub.add_parser("update-all", help="Poll every active feed")
	p = sub.add_parser("update", help="Poll a single feed")
	p.add_argument("feed_id", type=int)
	p = sub.add_parser("resync", help="Re-read article dates for a feed")
	p.add_argument("feed_id", type=int)
	p = sub.add_parser("add", help="Subscribe to a feed URL")
	p.add_argument("url")
	p.add_argument("--title")
	sub.add_parser("cleanup", help="Delete old articles and prune tombstones")
	sub.add_parser("favicons", help="Fill in missing favicon URLs")
	return parser


def main(argv: Optional[List[str]] = None) -> int:
	args = build_parser().parse_args(argv)
	setup_logging()
	settings = load_settings()
	init_db()
	ingestor = FeedIngestor.from_settings(settings)

	try:
		if args.command == "update-all":
			summary = ingestor.update_all_feeds()
			_print({
				"succeeded": summary.succeeded,
				"failed": summary.failed,
				"skipped": summary.skipped,
				"total": summary.total,
				"failures": [asdict(r) for r in summary.results if not r.ok],
			})
			return 0 if summary.failed == 0 else 1
		if args.command == "update":
			feed = ingestor.store.get_feed(args.feed_id)
			if feed is None:
				raise FeedNotFound(args.feed_id)
			result = ingestor.update_feed(feed)
			_print(asdict(result))
			return 0 if result.ok else 1
		if args.command == "resync":
			_print({"updated": ingestor.resync_article_dates(args.feed_id)})
			return 0
		if args.command == "add":
			_print(ingestor.subscribe(args.url, title=args.title).to_dict())
			return 0
		if args.command == "cleanup":
			_print(ingestor.store.apply_retention(settings.article_retention_days, settings.tombstone_retention_days))
			return 0
		if args.command == "favicons":
			_print({"updated": ingestor.backfill_favicons()})
			return 0
	except (FetchError, ParseError) as e:
		logger.error("%s", e)
		print(e.user_message, file=sys.stderr)
		return 1
	except FeedNotFound as e:
		print(str(e), file=sys.stderr)
		return 2
	return 1


if __name__ == "__main__":
	sys.exit(main())
