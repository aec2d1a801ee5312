from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, Iterator, List, Optional, Set

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from .db import get_session_factory
from .models import Article, DeletedArticle, Feed, as_utc, utcnow

logger = logging.getLogger(__name__)

_IN_CHUNK = 500

FEED_FIELDS = ("title", "description", "site_url", "favicon_url", "is_active", "last_fetched_at")


@dataclass
class InsertResult:
	"""Outcome of an article insert. A URL conflict is a value here, not an exception."""

	inserted: int = 0
	conflict: bool = False
	conflicting_urls: List[str] = field(default_factory=list)
	feed_missing: bool = False

	@property
	def ok(self) -> bool:
		return not self.conflict and not self.feed_missing


def _chunks(values: List[str], size: int = _IN_CHUNK) -> Iterator[List[str]]:
	for i in range(0, len(values), size):
		yield values[i:i + size]


def _to_row(article: Any, feed_id: int) -> Article:
	return Article(
		feed_id=feed_id,
		url=article.url,
		title=article.title,
		description=article.description,
		author=article.author,
		image_url=article.image_url,
		published_at=article.published_at,
	)


def _apply_feed_changes(feed: Feed, changes: Optional[Dict[str, Any]]) -> None:
	for key, value in (changes or {}).items():
		if key not in FEED_FIELDS:
			raise ValueError(f"unknown feed field: {key}")
		setattr(feed, key, value)


class FeedStore:
	"""SQLAlchemy-backed persistence for feeds, articles and tombstones.

	Every call opens and closes its own session, so instances are safe to share
	between threads and a call never sees stale state from an earlier one.
	"""

	def __init__(self, session_factory: Optional[sessionmaker] = None):
		self._session_factory = session_factory or get_session_factory()

	@contextmanager
	def session(self) -> Iterator[Session]:
		s = self._session_factory()
		try:
			yield s
		finally:
			s.close()

	# feeds

	def load_active_feeds(self) -> List[Feed]:
		with self.session() as s:
			return list(s.scalars(select(Feed).where(Feed.is_active.is_(True)).order_by(Feed.id)))

	def list_feeds(self) -> List[Feed]:
		with self.session() as s:
			return list(s.scalars(select(Feed).order_by(Feed.title)))

	def get_feed(self, feed_id: int) -> Optional[Feed]:
		with self.session() as s:
			return s.get(Feed, feed_id)

	def get_feed_by_url(self, url: str) -> Optional[Feed]:
		with self.session() as s:
			return s.scalars(select(Feed).where(Feed.url == url)).first()

	def add_feed(self, url: str, **fields: Any) -> Feed:
		with self.session() as s:
			feed = Feed(url=url, title=(fields.pop("title", None) or url)[:500])
			_apply_feed_changes(feed, fields)
			s.add(feed)
			try:
				s.commit()
			except IntegrityError:
				s.rollback()
				existing = s.scalars(select(Feed).where(Feed.url == url)).first()
				if existing is None:
					raise
				return existing
			return feed

	def update_feed_metadata(self, feed_id: int, **changes: Any) -> Optional[Feed]:
		with self.session() as s:
			feed = s.get(Feed, feed_id)
			if feed is None:
				return None
			_apply_feed_changes(feed, changes)
			s.commit()
			return feed

	def feeds_missing_favicon(self) -> List[Feed]:
		with self.session() as s:
			stmt = select(Feed).where(
				Feed.is_active.is_(True),
				(Feed.favicon_url.is_(None)) | (Feed.favicon_url == ""),
				Feed.site_url.is_not(None),
				Feed.site_url != "",
			)
			return list(s.scalars(stmt))

	def delete_feed(self, feed_id: int, now: Optional[datetime] = None) -> bool:
		with self.session() as s:
			feed = s.get(Feed, feed_id)
			if feed is None:
				return False
			rows = list(s.scalars(select(Article).where(Article.feed_id == feed_id)))
			self._tombstone_and_delete(s, rows, now or utcnow())
			s.delete(feed)
			s.commit()
			return True

	# articles

	def load_article_urls(self, feed_id: int) -> Set[str]:
		with self.session() as s:
			return set(s.scalars(select(Article.url).where(Article.feed_id == feed_id)))

	def load_tombstone_urls(self) -> Set[str]:
		with self.session() as s:
			return set(s.scalars(select(DeletedArticle.url)))

	def url_exists_globally(self, url: str) -> bool:
		with self.session() as s:
			return s.scalar(select(Article.id).where(Article.url == url).limit(1)) is not None

	def _existing_urls(self, s: Session, urls: Iterable[str]) -> Set[str]:
		found: Set[str] = set()
		for chunk in _chunks(sorted(set(urls))):
			found.update(s.scalars(select(Article.url).where(Article.url.in_(chunk))))
		return found

	def insert_articles_batch(self, feed_id: int, articles: List[Any], feed_changes: Optional[Dict[str, Any]] = None) -> InsertResult:
		"""Insert all articles and apply feed_changes in one transaction.

		On a unique violation nothing is written and the result carries the URLs
		that already exist.
		"""
		with self.session() as s:
			feed = s.get(Feed, feed_id)
			if feed is None:
				return InsertResult(feed_missing=True)
			s.add_all([_to_row(a, feed_id) for a in articles])
			_apply_feed_changes(feed, feed_changes)
			try:
				s.commit()
			except IntegrityError:
				s.rollback()
				urls = [a.url for a in articles]
				taken = self._existing_urls(s, urls)
				if not taken and len(set(urls)) == len(urls):
					# not a URL collision
					raise
				return InsertResult(conflict=True, conflicting_urls=sorted(taken))
			return InsertResult(inserted=len(articles))

	def insert_article_single(self, article: Any, feed_id: Optional[int] = None) -> InsertResult:
		feed_id = feed_id if feed_id is not None else article.feed_id
		with self.session() as s:
			s.add(_to_row(article, feed_id))
			try:
				s.commit()
			except IntegrityError:
				s.rollback()
				if not self._existing_urls(s, [article.url]):
					raise
				return InsertResult(conflict=True, conflicting_urls=[article.url])
			return InsertResult(inserted=1)

	def resync_published_at(self, feed_id: int, dates: Dict[str, datetime]) -> int:
		"""Overwrite published_at for this feed's articles whose date changed upstream."""
		updated = 0
		with self.session() as s:
			for row in s.scalars(select(Article).where(Article.feed_id == feed_id)):
				new = dates.get(row.url)
				if new is None or as_utc(new) == as_utc(row.published_at):
					continue
				logger.info("Updating date for article %r from %s to %s", row.title, row.published_at, new)
				row.published_at = new
				updated += 1
			if updated:
				s.commit()
		return updated

	def _tombstone_and_delete(self, s: Session, rows: List[Article], now: datetime) -> int:
		for row in rows:
			s.add(DeletedArticle(url=row.url, deleted_at=now))
			s.delete(row)
		return len(rows)

	def delete_article(self, article_id: int, now: Optional[datetime] = None) -> bool:
		with self.session() as s:
			row = s.get(Article, article_id)
			if row is None:
				return False
			self._tombstone_and_delete(s, [row], now or utcnow())
			s.commit()
			return True

	def purge_articles_older_than(self, days: int, now: Optional[datetime] = None) -> int:
		now = now or utcnow()
		cutoff = now - timedelta(days=days)
		with self.session() as s:
			rows = list(s.scalars(select(Article).where(Article.published_at < cutoff)))
			count = self._tombstone_and_delete(s, rows, now)
			s.commit()
		if count:
			logger.info("Cleaned up %d articles older than %d days (published before %s)", count, days, cutoff)
		else:
			logger.debug("No old articles to clean up")
		return count

	def prune_tombstones(self, days: int, now: Optional[datetime] = None) -> int:
		cutoff = (now or utcnow()) - timedelta(days=days)
		with self.session() as s:
			result = s.execute(delete(DeletedArticle).where(DeletedArticle.deleted_at < cutoff))
			s.commit()
			return result.rowcount or 0

	def apply_retention(self, article_days: int, tombstone_days: Optional[int] = None) -> Dict[str, int]:
		removed = self.purge_articles_older_than(article_days)
		pruned = self.prune_tombstones(tombstone_days) if tombstone_days else 0
		return {"articles_deleted": removed, "tombstones_pruned": pruned}

	def stats(self) -> Dict[str, Any]:
		with self.session() as s:
			last_fetch = s.scalar(select(func.max(Feed.last_fetched_at)))
			return {
				"feeds": int(s.scalar(select(func.count(Feed.id))) or 0),
				"active_feeds": int(s.scalar(select(func.count(Feed.id)).where(Feed.is_active.is_(True))) or 0),
				"articles": int(s.scalar(select(func.count(Article.id))) or 0),
				"tombstones": int(s.scalar(select(func.count(DeletedArticle.id))) or 0),
				"last_fetched_at": last_fetch.isoformat() if last_fetch else None,
			}
