from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from dateutil import parser as date_parser

from backend.text_utils import strip_html, truncate
from .parser import RawItem

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 50000
MAX_TITLE_LENGTH = 1000
MAX_AUTHOR_LENGTH = 500
MAX_URL_LENGTH = 2000

# Timezone abbreviations dateutil doesn't know on its own
TZINFOS = {
	"EST": timezone(timedelta(hours=-5)),
	"EDT": timezone(timedelta(hours=-4)),
	"CST": timezone(timedelta(hours=-6)),
	"CDT": timezone(timedelta(hours=-5)),
	"MST": timezone(timedelta(hours=-7)),
	"MDT": timezone(timedelta(hours=-6)),
	"PST": timezone(timedelta(hours=-8)),
	"PDT": timezone(timedelta(hours=-7)),
	"GMT": timezone.utc,
	"UTC": timezone.utc,
	"BST": timezone(timedelta(hours=1)),
	"CET": timezone(timedelta(hours=1)),
	"CEST": timezone(timedelta(hours=2)),
}


@dataclass
class NormalizedArticle:
	feed_id: Optional[int]
	url: str
	title: str
	published_at: datetime
	description: Optional[str] = None
	author: Optional[str] = None
	image_url: Optional[str] = None


def parse_date_string(value: Optional[str]) -> Optional[datetime]:
	if not value or not value.strip():
		return None
	try:
		dt = date_parser.parse(value.strip(), tzinfos=TZINFOS)
	except (ValueError, OverflowError) as e:
		logger.warning("Could not parse date string %r: %s", value, e)
		return None
	if dt.tzinfo is None:
		return dt.replace(tzinfo=timezone.utc)
	return dt.astimezone(timezone.utc)


def _local_name(tag_name: Optional[str]) -> str:
	return (tag_name or "").rsplit(":", 1)[-1].lower()


def _find_element(element, *names: str):
	if element is None:
		return None
	return element.find(lambda t: _local_name(t.name) in names)


def _element_date(element) -> Optional[datetime]:
	for name in ("updated", "published", "date"):
		found = _find_element(element, name)
		if found is not None:
			dt = parse_date_string(found.get_text())
			if dt is not None:
				return dt
	return None


def resolve_published_at(item: RawItem, now: datetime) -> datetime:
	if item.published is not None:
		if item.published.tzinfo is None:
			return item.published.replace(tzinfo=timezone.utc)
		return item.published
	dt = parse_date_string(item.published_raw)
	if dt is not None:
		return dt
	dt = _element_date(item.element)
	if dt is not None:
		logger.debug("Took date from the item element for %r: %s", item.title, dt)
		return dt
	logger.warning("No publication date found for article %r, using current time", item.title)
	return now


def extract_image_url(item: RawItem) -> Optional[str]:
	found = _find_element(item.element, "thumbnail", "image")
	if found is None:
		return None
	url = found.get("url") or None
	if url and len(url) > MAX_URL_LENGTH:
		logger.debug("Dropping image URL longer than %d chars for %r", MAX_URL_LENGTH, item.title)
		return None
	return url


def normalize_item(feed_id: Optional[int], feed_url: str, item: RawItem, now: Optional[datetime] = None) -> NormalizedArticle:
	now = now or datetime.now(timezone.utc)
	url = (item.link or "").strip()
	if not url:
		# keeps the item, at the cost of an article that shares the feed's URL
		logger.warning("Item %r has no link; using the feed URL %s", item.title, feed_url)
		url = feed_url
	title = (item.title or "").strip() or "Untitled"
	return NormalizedArticle(
		feed_id=feed_id,
		url=url,
		title=truncate(title, MAX_TITLE_LENGTH),
		description=truncate(strip_html(item.description), MAX_DESCRIPTION_LENGTH),
		author=truncate(item.author, MAX_AUTHOR_LENGTH),
		image_url=extract_image_url(item),
		published_at=resolve_published_at(item, now),
	)
