from __future__ import annotations

import threading
from typing import Optional

from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging as celery_setup_logging, worker_shutting_down

from backend.db import init_db
from backend.settings import load_settings, setup_logging
from crawler.ingest import FeedIngestor

settings = load_settings()
celery_app = Celery('feeds', broker=settings.redis_url, backend=settings.redis_url, include=['tasks.fetch_feed', 'tasks.schedule'])

celery_app.conf.task_acks_late = True
celery_app.conf.worker_max_tasks_per_child = 100

celery_app.conf.timezone = 'UTC'
celery_app.conf.beat_schedule = {
    'update-all-feeds-hourly': {
        'task': 'tasks.schedule.update_all_feeds',
        'schedule': crontab(minute=0),
    },
    'cleanup-old-articles-daily': {
        'task': 'tasks.schedule.cleanup_old_articles',
        'schedule': crontab(minute=30, hour=3),
    },
}

# set on warm shutdown so retry backoffs stop waiting
STOP_EVENT = threading.Event()
_ingestor: Optional[FeedIngestor] = None


@celery_setup_logging.connect
def _configure_logging(**kwargs):
	setup_logging()


@worker_shutting_down.connect
def _on_shutdown(**kwargs):
	STOP_EVENT.set()


def get_ingestor() -> FeedIngestor:
	global _ingestor
	if _ingestor is None:
		init_db()
		_ingestor = FeedIngestor.from_settings(settings, stop_event=STOP_EVENT)
	return _ingestor
