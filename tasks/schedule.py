from __future__ import annotations

from tasks.app import celery_app, get_ingestor, settings


@celery_app.task
def update_all_feeds() -> dict:
	summary = get_ingestor().update_all_feeds()
	return {
		"succeeded": summary.succeeded,
		"failed": summary.failed,
		"skipped": summary.skipped,
		"total": summary.total,
	}


@celery_app.task
def cleanup_old_articles() -> dict:
	return get_ingestor().store.apply_retention(settings.article_retention_days, settings.tombstone_retention_days)
