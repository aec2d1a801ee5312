from __future__ import annotations

import logging
import threading

from apscheduler.schedulers.blocking import BlockingScheduler

from backend.db import init_db
from backend.settings import load_settings, setup_logging
from .ingest import FeedIngestor

logger = logging.getLogger(__name__)


def run_job(ingestor: FeedIngestor) -> None:
	logger.info("start feed update")
	try:
		summary = ingestor.update_all_feeds()
		logger.info("done: %d succeeded, %d failed of %d", summary.succeeded, summary.failed, summary.total)
	except Exception:
		logger.exception("feed update run failed")


def run_cleanup_job(ingestor: FeedIngestor, article_days: int, tombstone_days) -> None:
	try:
		logger.info("cleanup: %s", ingestor.store.apply_retention(article_days, tombstone_days))
	except Exception:
		logger.exception("cleanup run failed")


def main() -> None:
	setup_logging()
	settings = load_settings()
	init_db()
	stop_event = threading.Event()
	ingestor = FeedIngestor.from_settings(settings, stop_event=stop_event)

	scheduler = BlockingScheduler(timezone="UTC")
	scheduler.add_job(
		run_job,
		"interval",
		args=[ingestor],
		minutes=settings.crawl_interval_minutes,
		coalesce=True,
		max_instances=1,
		misfire_grace_time=120,
	)
	scheduler.add_job(
		run_cleanup_job,
		"interval",
		args=[ingestor, settings.article_retention_days, settings.tombstone_retention_days],
		days=1,
		coalesce=True,
		max_instances=1,
	)
	logger.info("scheduling feed updates every %d minutes; DATABASE_URL=%s", settings.crawl_interval_minutes, settings.database_url)
	run_job(ingestor)
	try:
		scheduler.start()
	except (KeyboardInterrupt, SystemExit):
		# let an in-flight fetch give up instead of waiting out its retries
		stop_event.set()
		scheduler.shutdown(wait=False)


if __name__ == "__main__":
	main()
