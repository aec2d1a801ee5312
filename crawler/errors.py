from __future__ import annotations

from enum import Enum
from typing import Optional


class IngestError(Exception):
	"""Base class for errors raised by the ingestion pipeline."""


class FetchErrorKind(str, Enum):
	HTTP_STATUS = "http_status"
	NOT_FOUND = "not_found"
	FORBIDDEN = "forbidden"
	TIMEOUT = "timeout"
	TLS_ERROR = "tls_error"
	NOT_A_FEED = "not_a_feed"
	EMPTY_BODY = "empty_body"
	EXHAUSTED = "exhausted"
	CANCELLED = "cancelled"


_USER_MESSAGES = {
	FetchErrorKind.NOT_FOUND: (
		"Feed not found (404). The feed URL may have moved or been removed. "
		"Please check the website for an updated RSS feed URL."
	),
	FetchErrorKind.FORBIDDEN: (
		"Access forbidden (403). The feed may be blocking automated requests or require authentication."
	),
	FetchErrorKind.TLS_ERROR: (
		"SSL/TLS connection error. The feed server may have certificate issues or use outdated security protocols."
	),
	FetchErrorKind.TIMEOUT: "Request timed out. The feed server may be slow or unreachable.",
	FetchErrorKind.NOT_A_FEED: (
		"The URL returned HTML instead of an RSS/Atom feed. This might be a website URL instead of a feed URL."
	),
	FetchErrorKind.EMPTY_BODY: "Server returned empty content.",
	FetchErrorKind.EXHAUSTED: (
		"Failed to download feed. The feed may be dead, moved, or blocking automated requests."
	),
	FetchErrorKind.CANCELLED: "Feed download was cancelled.",
}


class FetchError(IngestError):
	def __init__(
		self,
		kind: FetchErrorKind,
		message: str,
		url: Optional[str] = None,
		status_code: Optional[int] = None,
		snippet: Optional[str] = None,
	):
		super().__init__(message)
		self.kind = kind
		self.url = url
		self.status_code = status_code
		self.snippet = snippet

	@property
	def user_message(self) -> str:
		if self.kind == FetchErrorKind.HTTP_STATUS:
			if self.status_code is None or 300 <= self.status_code < 400:
				return "Too many redirects or redirect loop detected."
			return f"Server returned {self.status_code}. The feed may be unavailable."
		return _USER_MESSAGES[self.kind]

	def __repr__(self) -> str:
		return f"FetchError(kind={self.kind.value!r}, status_code={self.status_code!r}, url={self.url!r})"


class ParseErrorKind(str, Enum):
	MALFORMED = "malformed"


class ParseError(IngestError):
	def __init__(self, detail: str, kind: ParseErrorKind = ParseErrorKind.MALFORMED):
		super().__init__(f"Unable to parse feed: {detail}")
		self.kind = kind
		self.detail = detail

	@property
	def user_message(self) -> str:
		return (
			"Unable to parse feed. The document is not a valid RSS/Atom feed. "
			f"Technical details: {self.detail}"
		)


class FeedNotFound(IngestError):
	"""The feed row is missing, e.g. it was deleted while being ingested."""

	def __init__(self, feed_id: int):
		super().__init__(f"Feed {feed_id} not found")
		self.feed_id = feed_id
