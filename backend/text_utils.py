from __future__ import annotations

import re
import urllib.parse
import warnings
from typing import Optional

from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning

# descriptions that are just a URL are text, not a path to open
warnings.filterwarnings("ignore", category=MarkupResemblesLocatorWarning)

_WS_RE = re.compile(r"\s+")


def strip_html(text: Optional[str]) -> Optional[str]:
	"""Decode entities and drop tags until nothing changes, then collapse whitespace.

	Decoding can surface new markup (``&lt;b&gt;``) and removing a tag can join
	the halves of another (``<<b>p>``), so both run together to a fixed point.
	"""
	if not text:
		return text
	cleaned = text
	while True:
		previous = cleaned
		cleaned = BeautifulSoup(cleaned, "html.parser").get_text()
		if cleaned == previous:
			break
	return _WS_RE.sub(" ", cleaned).strip()


def truncate(text: Optional[str], limit: int) -> Optional[str]:
	if text is None or len(text) <= limit:
		return text
	return text[:limit]


def site_root(url: Optional[str]) -> Optional[str]:
	"""scheme://host of a URL, or None when it has neither."""
	if not url:
		return None
	try:
		u = urllib.parse.urlsplit(url.strip())
	except ValueError:
		return None
	if not u.scheme or not u.hostname:
		return None
	return f"{u.scheme}://{u.hostname}"


def favicon_url(site_url: Optional[str]) -> Optional[str]:
	root = site_root(site_url)
	return f"{root}/favicon.ico" if root else None
