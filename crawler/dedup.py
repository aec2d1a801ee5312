from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Set

from .normalize import NormalizedArticle

DEFAULT_WINDOW = timedelta(days=14)


@dataclass
class DedupResult:
	accepted: List[NormalizedArticle] = field(default_factory=list)
	duplicates: int = 0
	tombstoned: int = 0
	too_old: int = 0

	@property
	def rejected(self) -> int:
		return self.duplicates + self.tombstoned + self.too_old


def ingest_cutoff(now: Optional[datetime] = None, window: timedelta = DEFAULT_WINDOW) -> datetime:
	return (now or datetime.now(timezone.utc)) - window


def filter_articles(
	feed_id: int,
	candidates: Iterable[NormalizedArticle],
	existing_urls: Set[str],
	tombstone_urls: Set[str],
	cutoff: datetime,
) -> DedupResult:
	"""Keep the candidates that are new for this feed, not tombstoned and recent enough.

	existing_urls only covers this feed. The unique index on articles.url still
	has the final word on URLs owned by other feeds.
	"""
	result = DedupResult()
	seen: Set[str] = set()
	for article in candidates:
		if article.url in existing_urls or article.url in seen:
			result.duplicates += 1
			continue
		if article.url in tombstone_urls:
			result.tombstoned += 1
			continue
		if article.published_at < cutoff:
			result.too_old += 1
			continue
		seen.add(article.url)
		result.accepted.append(replace(article, feed_id=feed_id))
	return result
