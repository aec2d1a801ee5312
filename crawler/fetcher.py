from __future__ import annotations

import logging
import ssl
import threading
from dataclasses import dataclass
from typing import Dict, Optional

import requests
from requests.adapters import HTTPAdapter

from backend.settings import DEFAULT_USER_AGENT, Settings
from .errors import FetchError, FetchErrorKind

logger = logging.getLogger(__name__)

REQUEST_HEADERS = {
	"User-Agent": DEFAULT_USER_AGENT,
	"Accept": "application/rss+xml, application/xml, application/atom+xml, text/xml, */*",
}

_BOM = b"\xef\xbb\xbf"


class _TLSAdapter(HTTPAdapter):
	"""Pin the handshake to TLS 1.2 or newer."""

	def __init__(self, verify: bool = True, **kwargs):
		self.verify = verify
		super().__init__(**kwargs)

	def init_poolmanager(self, *args, **kwargs):
		context = ssl.create_default_context()
		context.minimum_version = ssl.TLSVersion.TLSv1_2
		if not self.verify:
			# urllib3 sets CERT_NONE itself; that is refused while check_hostname is on
			context.check_hostname = False
			context.verify_mode = ssl.CERT_NONE
		kwargs["ssl_context"] = context
		return super().init_poolmanager(*args, **kwargs)


def build_session(user_agent: str = DEFAULT_USER_AGENT, max_redirects: int = 5, verify_tls: bool = True) -> requests.Session:
	session = requests.Session()
	session.headers.update(REQUEST_HEADERS)
	session.headers["User-Agent"] = user_agent
	session.max_redirects = max_redirects
	session.verify = verify_tls
	session.mount("https://", _TLSAdapter(verify=verify_tls))
	return session


@dataclass
class FetchResult:
	content: bytes
	content_type: str
	sniffed_format: str
	final_url: str


def sniff_format(content: bytes) -> str:
	"""Best-effort guess of the document flavour from its first bytes."""
	head = content.lstrip(_BOM).lstrip()[:1024].lower()
	if head.startswith(b"<!doctype html") or head.startswith(b"<html"):
		return "html"
	if b"<rss" in head:
		return "rss"
	if b"<feed" in head:
		return "atom"
	if b"<rdf:rdf" in head:
		return "rdf"
	return "xml"


class FeedFetcher:
	def __init__(
		self,
		session: Optional[requests.Session] = None,
		timeout: float = 90.0,
		retries: int = 3,
		backoff: float = 1.0,
		verify_tls: bool = True,
		stop_event: Optional[threading.Event] = None,
	):
		self.session = session or build_session(verify_tls=verify_tls)
		self.timeout = timeout
		self.retries = max(1, retries)
		self.backoff = backoff
		self.verify_tls = verify_tls
		self.stop_event = stop_event or threading.Event()

	@classmethod
	def from_settings(cls, settings: Settings, stop_event: Optional[threading.Event] = None) -> "FeedFetcher":
		return cls(
			session=build_session(settings.user_agent, settings.max_redirects, settings.verify_tls),
			timeout=settings.fetch_timeout,
			retries=settings.fetch_retries,
			backoff=settings.retry_backoff,
			verify_tls=settings.verify_tls,
			stop_event=stop_event,
		)

	def fetch(self, url: str) -> FetchResult:
		response = self._get_with_retries(url)
		content = response.content or b""
		self._check_body(url, content)
		return FetchResult(
			content=content,
			content_type=response.headers.get("Content-Type", ""),
			sniffed_format=sniff_format(content),
			final_url=response.url or url,
		)

	def _get_with_retries(self, url: str) -> requests.Response:
		last_exc: Optional[Exception] = None
		for attempt in range(1, self.retries + 1):
			if self.stop_event.is_set():
				raise FetchError(FetchErrorKind.CANCELLED, f"Fetch of {url} cancelled", url=url)
			try:
				response = self.session.get(url, timeout=self.timeout, verify=self.verify_tls)
			except requests.exceptions.TooManyRedirects as e:
				code = getattr(e.response, "status_code", None)
				raise FetchError(
					FetchErrorKind.HTTP_STATUS,
					f"Too many redirects fetching {url}",
					url=url,
					status_code=code,
				) from e
			except requests.exceptions.SSLError as e:
				raise FetchError(FetchErrorKind.TLS_ERROR, f"TLS error fetching {url}: {e}", url=url) from e
			except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
				last_exc = e
				logger.warning("Attempt %d/%d for %s failed: %s", attempt, self.retries, url, e)
				if attempt < self.retries:
					self._sleep(url, attempt * self.backoff)
				continue
			self._check_status(url, response)
			return response

		kind = FetchErrorKind.TIMEOUT if isinstance(last_exc, requests.exceptions.Timeout) else FetchErrorKind.EXHAUSTED
		raise FetchError(
			kind,
			f"Failed to download {url} after {self.retries} attempts: {last_exc}",
			url=url,
		) from last_exc

	def _sleep(self, url: str, seconds: float) -> None:
		# Event.wait returns True as soon as shutdown is requested
		if self.stop_event.wait(seconds):
			raise FetchError(FetchErrorKind.CANCELLED, f"Fetch of {url} cancelled", url=url)

	@staticmethod
	def _check_status(url: str, response: requests.Response) -> None:
		code = response.status_code
		if 200 <= code < 300:
			return
		snippet = (response.text or "")[:200]
		kinds: Dict[int, FetchErrorKind] = {404: FetchErrorKind.NOT_FOUND, 403: FetchErrorKind.FORBIDDEN}
		raise FetchError(
			kinds.get(code, FetchErrorKind.HTTP_STATUS),
			f"Server returned {code} for {url}",
			url=url,
			status_code=code,
			snippet=snippet,
		)

	@staticmethod
	def _check_body(url: str, content: bytes) -> None:
		trimmed = content.lstrip(_BOM).lstrip()
		if not trimmed:
			raise FetchError(FetchErrorKind.EMPTY_BODY, f"Empty response body from {url}", url=url)
		head = trimmed[:64].lower()
		if head.startswith(b"<!doctype html") or head.startswith(b"<html"):
			raise FetchError(
				FetchErrorKind.NOT_A_FEED,
				f"{url} returned HTML instead of a feed",
				url=url,
				snippet=trimmed[:100].decode("utf-8", "replace"),
			)
		if not trimmed.startswith(b"<"):
			snippet = trimmed[:100].decode("utf-8", "replace")
			raise FetchError(
				FetchErrorKind.NOT_A_FEED,
				f"Content from {url} doesn't appear to be XML: {snippet}",
				url=url,
				snippet=snippet,
			)
