from __future__ import annotations

from dataclasses import asdict

from sqlalchemy.exc import OperationalError

from tasks.app import celery_app, get_ingestor
from crawler.errors import FeedNotFound


@celery_app.task(bind=True, autoretry_for=(OperationalError,), retry_backoff=5, max_retries=3)
def update_feed(self, feed_id: int):
	ingestor = get_ingestor()
	feed = ingestor.store.get_feed(feed_id)
	if feed is None:
		raise FeedNotFound(feed_id)
	return asdict(ingestor.update_feed(feed))


@celery_app.task
def resync_feed_dates(feed_id: int) -> int:
	return get_ingestor().resync_article_dates(feed_id)
