from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy.exc import SQLAlchemyError

from backend.models import Feed
from backend.settings import Settings
from backend.store import FeedStore
from backend.text_utils import favicon_url, site_root
from .dedup import filter_articles, ingest_cutoff
from .errors import FeedNotFound, FetchError, ParseError
from .fetcher import FeedFetcher
from .normalize import NormalizedArticle, normalize_item
from .parser import FeedDocument, parse_document

logger = logging.getLogger(__name__)


class FeedStatus(str, Enum):
	SUCCEEDED = "succeeded"
	PARTIALLY_RECOVERED = "partially_recovered"
	FAILED = "failed"


@dataclass
class FeedUpdateResult:
	feed_id: int
	feed_url: str
	status: FeedStatus
	fetched: int = 0
	accepted: int = 0
	inserted: int = 0
	skipped_conflicts: int = 0
	error: Optional[str] = None
	error_kind: Optional[str] = None

	@property
	def ok(self) -> bool:
		return self.status != FeedStatus.FAILED


@dataclass
class UpdateSummary:
	succeeded: int = 0
	failed: int = 0
	skipped: int = 0
	total: int = 0
	results: List[FeedUpdateResult] = field(default_factory=list)


class FeedIngestor:
	"""Runs fetch, parse, normalize, dedup and persist for feeds."""

	def __init__(
		self,
		store: FeedStore,
		fetcher: FeedFetcher,
		window: timedelta = timedelta(days=14),
		max_workers: int = 1,
		stop_event: Optional[threading.Event] = None,
	):
		self.store = store
		self.fetcher = fetcher
		self.window = window
		self.max_workers = max(1, max_workers)
		self.stop_event = stop_event or fetcher.stop_event

	@classmethod
	def from_settings(cls, settings: Settings, store: Optional[FeedStore] = None, stop_event: Optional[threading.Event] = None) -> "FeedIngestor":
		stop_event = stop_event or threading.Event()
		return cls(
			store=store or FeedStore(),
			fetcher=FeedFetcher.from_settings(settings, stop_event=stop_event),
			window=timedelta(days=settings.ingest_window_days),
			max_workers=settings.max_workers,
			stop_event=stop_event,
		)

	def fetch_document(self, url: str) -> FeedDocument:
		result = self.fetcher.fetch(url)
		return parse_document(result.content)

	def _normalize(self, feed_id: Optional[int], feed_url: str, doc: FeedDocument, now: datetime) -> List[NormalizedArticle]:
		return [normalize_item(feed_id, feed_url, item, now=now) for item in doc.items]

	def _metadata_backfill(self, feed: Feed, doc: FeedDocument) -> Dict[str, Any]:
		changes: Dict[str, Any] = {}
		if not feed.title or feed.title == feed.url:
			if doc.title:
				changes["title"] = doc.title[:500]
		if not feed.description and doc.description:
			changes["description"] = doc.description
		if not feed.site_url:
			site_url = doc.site_link or site_root(feed.url)
			if site_url:
				changes["site_url"] = site_url
				if not feed.favicon_url:
					changes["favicon_url"] = favicon_url(site_url)
		return changes

	def update_feed(self, feed: Feed) -> FeedUpdateResult:
		"""Poll one feed and persist its new articles.

		Fetch and parse failures come back as a FAILED result. Anything else is
		logged and re-raised.
		"""
		try:
			return self._update_feed(feed)
		except FetchError as e:
			logger.warning(
				"Failed to fetch feed %s: %s (%s) - %s [kind=%s status=%s] %r",
				feed.id, feed.title, feed.url, e, e.kind.value, e.status_code, e.snippet,
			)
			return self._failed(feed, e)
		except ParseError as e:
			logger.warning("Failed to parse feed %s: %s (%s) - %s", feed.id, feed.title, feed.url, e)
			return self._failed(feed, e)
		except Exception:
			logger.exception("Error updating feed %s: %s", feed.id, feed.url)
			raise

	@staticmethod
	def _failed(feed: Feed, e: Union[FetchError, ParseError]) -> FeedUpdateResult:
		return FeedUpdateResult(
			feed_id=feed.id,
			feed_url=feed.url,
			status=FeedStatus.FAILED,
			error=e.user_message,
			error_kind=e.kind.value,
		)

	def _update_feed(self, feed: Feed) -> FeedUpdateResult:
		logger.info("Starting update for feed: %s (%s)", feed.title, feed.url)
		doc = self.fetch_document(feed.url)
		return self._store_document(feed, doc)

	def _store_document(self, feed: Feed, doc: FeedDocument) -> FeedUpdateResult:
		now = datetime.now(timezone.utc)
		candidates = self._normalize(feed.id, feed.url, doc, now)
		logger.info("Fetched %d articles from %s", len(candidates), feed.title)

		existing = self.store.load_article_urls(feed.id)
		tombstones = self.store.load_tombstone_urls()
		dedup = filter_articles(feed.id, candidates, existing, tombstones, ingest_cutoff(now, self.window))
		if dedup.accepted:
			logger.info(
				"Adding %d new articles for feed %s (filtered %d tombstoned, %d old)",
				len(dedup.accepted), feed.title, dedup.tombstoned, dedup.too_old,
			)
		else:
			logger.info("No new articles found for feed %s", feed.title)

		changes = self._metadata_backfill(feed, doc)
		changes["last_fetched_at"] = datetime.now(timezone.utc)
		result = FeedUpdateResult(
			feed_id=feed.id,
			feed_url=feed.url,
			status=FeedStatus.SUCCEEDED,
			fetched=len(candidates),
			accepted=len(dedup.accepted),
		)

		batch = self.store.insert_articles_batch(feed.id, dedup.accepted, changes)
		if batch.feed_missing:
			logger.error("Feed %s disappeared before its articles could be stored", feed.id)
			raise FeedNotFound(feed.id)
		if not batch.conflict:
			result.inserted = batch.inserted
			return result

		logger.warning(
			"Batch insert failed due to duplicate URLs for feed %s (%d already stored elsewhere). Trying individual inserts...",
			feed.title, len(batch.conflicting_urls),
		)
		inserted, skipped = self._insert_individually(feed, dedup.accepted)
		result.status = FeedStatus.PARTIALLY_RECOVERED
		result.inserted = inserted
		result.skipped_conflicts = skipped
		if self.store.update_feed_metadata(feed.id, **changes) is None:
			raise FeedNotFound(feed.id)
		logger.info("Added %d articles individually for feed %s", inserted, feed.title)
		return result

	def _insert_individually(self, feed: Feed, articles: List[NormalizedArticle]) -> Tuple[int, int]:
		if self.store.get_feed(feed.id) is None:
			logger.error("Feed %s not found in database during conflict recovery", feed.id)
			raise FeedNotFound(feed.id)
		inserted = skipped = 0
		for article in articles:
			try:
				if self.store.url_exists_globally(article.url):
					skipped += 1
					continue
				outcome = self.store.insert_article_single(article, feed.id)
			except SQLAlchemyError as e:
				logger.warning("Skipping article %s for feed %s: %s", article.url, feed.id, e)
				skipped += 1
				if self.store.get_feed(feed.id) is None:
					raise FeedNotFound(feed.id)
				continue
			if outcome.conflict:
				skipped += 1
			else:
				inserted += outcome.inserted
		return inserted, skipped

	def update_all_feeds(self) -> UpdateSummary:
		feeds = self.store.load_active_feeds()
		summary = UpdateSummary(total=len(feeds))
		logger.info("Starting update for %d feeds", len(feeds))

		if self.max_workers > 1 and len(feeds) > 1:
			with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="feed") as pool:
				outcomes = list(pool.map(self._update_isolated, feeds))
		else:
			outcomes = [self._update_isolated(feed) for feed in feeds]

		for feed, outcome in zip(feeds, outcomes):
			if outcome is None:
				summary.skipped += 1
			elif outcome.ok:
				summary.succeeded += 1
				summary.results.append(outcome)
			else:
				summary.failed += 1
				summary.results.append(outcome)

		logger.info(
			"Completed feed updates: %d succeeded, %d failed, %d skipped out of %d total",
			summary.succeeded, summary.failed, summary.skipped, summary.total,
		)
		return summary

	def _update_isolated(self, feed: Feed) -> Optional[FeedUpdateResult]:
		if self.stop_event.is_set():
			return None
		try:
			logger.info("Processing feed: %s (ID: %s) - %s", feed.title, feed.id, feed.url)
			result = self.update_feed(feed)
		except Exception as e:
			logger.error("Failed to update feed %s: %s (%s) - Error: %s", feed.id, feed.title, feed.url, e)
			return FeedUpdateResult(
				feed_id=feed.id,
				feed_url=feed.url,
				status=FeedStatus.FAILED,
				error=str(e),
				error_kind="infra",
			)
		if result.ok:
			logger.info("Successfully updated feed: %s", feed.title)
		else:
			logger.error("Failed to update feed %s: %s (%s) - Error: %s", feed.id, feed.title, feed.url, result.error)
		return result

	def resync_article_dates(self, feed_id: int) -> int:
		feed = self.store.get_feed(feed_id)
		if feed is None:
			raise FeedNotFound(feed_id)
		logger.info("Re-syncing article dates for feed: %s (%s)", feed.title, feed.url)
		now = datetime.now(timezone.utc)
		doc = self.fetch_document(feed.url)
		dates: Dict[str, datetime] = {}
		for article in self._normalize(feed.id, feed.url, doc, now):
			dates.setdefault(article.url, article.published_at)
		updated = self.store.resync_published_at(feed.id, dates)
		if updated:
			logger.info("Updated %d article dates for feed %s", updated, feed.title)
		else:
			logger.info("No article dates needed updating for feed %s", feed.title)
		return updated

	def subscribe(self, url: str, title: Optional[str] = None) -> Feed:
		"""Return the feed for url, creating and polling it if it is new."""
		url = url.strip()
		existing = self.store.get_feed_by_url(url)
		if existing is not None:
			return existing
		doc = self.fetch_document(url)
		site_url = doc.site_link or site_root(url)
		feed = self.store.add_feed(
			url,
			title=doc.title or title,
			description=doc.description,
			site_url=site_url,
			favicon_url=favicon_url(site_url),
		)
		result = self._store_document(feed, doc)
		logger.info("Subscribed to %s: %d articles added", url, result.inserted)
		return self.store.get_feed(feed.id) or feed

	def backfill_favicons(self) -> int:
		count = 0
		for feed in self.store.feeds_missing_favicon():
			icon = favicon_url(feed.site_url)
			if icon:
				self.store.update_feed_metadata(feed.id, favicon_url=icon)
				count += 1
		if count:
			logger.info("Updated %d feeds with favicon URLs", count)
		return count
