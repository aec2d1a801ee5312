from __future__ import annotations

import calendar
import logging
import re
import warnings
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Optional

import feedparser
from bs4 import BeautifulSoup, Tag, XMLParsedAsHTMLWarning

from .errors import ParseError

logger = logging.getLogger(__name__)

# item trees come from html.parser so no lxml is needed; tag names are lowercased
warnings.filterwarnings("ignore", category=XMLParsedAsHTMLWarning)

_DOCTYPE_RE = re.compile(rb"<!\s*doctype\s+", re.IGNORECASE)
_BOM = b"\xef\xbb\xbf"


@dataclass
class RawItem:
	title: Optional[str] = None
	link: Optional[str] = None
	description: Optional[str] = None
	author: Optional[str] = None
	published: Optional[datetime] = None
	published_raw: Optional[str] = None
	# the item's own element tree, used for date and image fallbacks
	element: Optional[Tag] = None


@dataclass
class FeedDocument:
	title: Optional[str] = None
	description: Optional[str] = None
	site_link: Optional[str] = None
	items: List[RawItem] = field(default_factory=list)


def fix_xml_issues(raw: bytes) -> bytes:
	raw = _DOCTYPE_RE.sub(b"<!DOCTYPE ", raw)
	if raw.startswith(_BOM):
		raw = raw[len(_BOM):]
	return raw.lstrip()


def _struct_to_utc(value: Any) -> Optional[datetime]:
	# feedparser normalises *_parsed fields to UTC struct_time
	if not value:
		return None
	try:
		return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
	except (TypeError, ValueError, OverflowError):
		return None


def _item_elements(raw: bytes, expected: int) -> List[Optional[Tag]]:
	soup = BeautifulSoup(raw, "html.parser")
	elements = soup.find_all(["item", "entry"])
	if len(elements) != expected:
		# can't pair elements with entries reliably; skip the fallbacks
		return [None] * expected
	return list(elements)


def _entry_description(entry: Any) -> Optional[str]:
	summary = entry.get("summary")
	if summary:
		return summary
	content = entry.get("content") or []
	if content:
		return content[0].get("value")
	return None


def parse_document(raw: bytes) -> FeedDocument:
	"""Parse an RSS/Atom document into a FeedDocument.

	Raises ParseError when feedparser cannot recover anything usable.
	"""
	data = fix_xml_issues(raw)
	parsed = feedparser.parse(data)
	entries = parsed.get("entries") or []
	channel = parsed.get("feed") or {}

	if not entries and not channel.get("title"):
		if parsed.get("bozo"):
			raise ParseError(str(parsed.get("bozo_exception") or "unknown parser error"))
		if not parsed.get("version"):
			raise ParseError("document is not a recognised RSS/Atom format")
	elif parsed.get("bozo"):
		logger.warning("Recovered from malformed feed document: %s", parsed.get("bozo_exception"))

	elements = _item_elements(data, len(entries))
	items: List[RawItem] = []
	for entry, element in zip(entries, elements):
		items.append(RawItem(
			title=entry.get("title"),
			link=entry.get("link"),
			description=_entry_description(entry),
			author=entry.get("author"),
			published=_struct_to_utc(entry.get("published_parsed") or entry.get("updated_parsed")),
			published_raw=entry.get("published") or entry.get("updated"),
			element=element,
		))

	return FeedDocument(
		title=channel.get("title"),
		description=channel.get("subtitle") or channel.get("description"),
		site_link=channel.get("link") or None,
		items=items,
	)
