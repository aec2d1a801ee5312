"""Tests for crawler.fetcher."""

import shutil
import ssl
import subprocess
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from unittest.mock import Mock

import pytest
import requests

from crawler.errors import FetchError, FetchErrorKind
from crawler.fetcher import FeedFetcher, build_session, sniff_format

RSS = b'<?xml version="1.0"?><rss version="2.0"><channel><title>T</title></channel></rss>'


def make_response(status=200, content=RSS, headers=None, url="https://example.com/feed"):
	response = Mock()
	response.status_code = status
	response.content = content
	response.text = content.decode("utf-8", "replace")
	response.headers = headers or {"Content-Type": "application/rss+xml"}
	response.url = url
	return response


def make_fetcher(*outcomes, retries=3):
	session = Mock()
	session.get.side_effect = list(outcomes)
	return FeedFetcher(session=session, retries=retries, backoff=0), session


class TestFetch:
	def test_returns_content_and_sniffed_format(self):
		fetcher, session = make_fetcher(make_response())

		result = fetcher.fetch("https://example.com/feed")

		assert result.content == RSS
		assert result.content_type == "application/rss+xml"
		assert result.sniffed_format == "rss"
		session.get.assert_called_once()
		assert session.get.call_args[1]["verify"] is True

	@pytest.mark.parametrize("status,kind", [
		(404, FetchErrorKind.NOT_FOUND),
		(403, FetchErrorKind.FORBIDDEN),
		(500, FetchErrorKind.HTTP_STATUS),
		(410, FetchErrorKind.HTTP_STATUS),
	])
	def test_classifies_status_codes(self, status, kind):
		fetcher, session = make_fetcher(make_response(status=status, content=b"nope"))

		with pytest.raises(FetchError) as exc:
			fetcher.fetch("https://example.com/feed")

		assert exc.value.kind == kind
		assert exc.value.status_code == status
		# status errors are not retried
		assert session.get.call_count == 1

	def test_not_found_has_actionable_message(self):
		fetcher, _ = make_fetcher(make_response(status=404, content=b""))

		with pytest.raises(FetchError) as exc:
			fetcher.fetch("https://example.com/feed")

		assert "404" in exc.value.user_message
		assert "moved or been removed" in exc.value.user_message

	def test_too_many_redirects(self):
		err = requests.exceptions.TooManyRedirects("Exceeded 5 redirects.")
		err.response = make_response(status=301)
		fetcher, _ = make_fetcher(err)

		with pytest.raises(FetchError) as exc:
			fetcher.fetch("https://example.com/feed")

		assert exc.value.kind == FetchErrorKind.HTTP_STATUS
		assert exc.value.status_code == 301
		assert "redirect" in exc.value.user_message.lower()

	def test_tls_error_is_not_retried(self):
		fetcher, session = make_fetcher(requests.exceptions.SSLError("certificate verify failed"))

		with pytest.raises(FetchError) as exc:
			fetcher.fetch("https://example.com/feed")

		assert exc.value.kind == FetchErrorKind.TLS_ERROR
		assert "SSL/TLS" in exc.value.user_message
		assert session.get.call_count == 1

	def test_retries_connection_errors_then_succeeds(self):
		fetcher, session = make_fetcher(
			requests.exceptions.ConnectionError("reset"),
			requests.exceptions.ConnectionError("reset"),
			make_response(),
		)

		result = fetcher.fetch("https://example.com/feed")

		assert result.content == RSS
		assert session.get.call_count == 3

	def test_exhausted_after_three_attempts(self):
		fetcher, session = make_fetcher(*[requests.exceptions.ConnectionError("refused")] * 3)

		with pytest.raises(FetchError) as exc:
			fetcher.fetch("https://example.com/feed")

		assert exc.value.kind == FetchErrorKind.EXHAUSTED
		assert session.get.call_count == 3

	def test_timeouts_exhausted_report_timeout(self):
		fetcher, _ = make_fetcher(*[requests.exceptions.ReadTimeout("slow")] * 3)

		with pytest.raises(FetchError) as exc:
			fetcher.fetch("https://example.com/feed")

		assert exc.value.kind == FetchErrorKind.TIMEOUT

	def test_backoff_grows_linearly(self):
		session = Mock()
		session.get.side_effect = [requests.exceptions.ConnectionError("x")] * 3
		stop_event = Mock(spec=threading.Event)
		stop_event.is_set.return_value = False
		stop_event.wait.return_value = False
		fetcher = FeedFetcher(session=session, retries=3, backoff=1.0, stop_event=stop_event)

		with pytest.raises(FetchError):
			fetcher.fetch("https://example.com/feed")

		assert [c.args[0] for c in stop_event.wait.call_args_list] == [1.0, 2.0]

	def test_cancelled_before_request(self):
		session = Mock()
		session.get.side_effect = [requests.exceptions.ConnectionError("x")] * 3
		stop_event = threading.Event()
		stop_event.set()
		fetcher = FeedFetcher(session=session, retries=3, backoff=10, stop_event=stop_event)

		with pytest.raises(FetchError) as exc:
			fetcher.fetch("https://example.com/feed")

		assert exc.value.kind == FetchErrorKind.CANCELLED
		session.get.assert_not_called()

	def test_cancelled_during_backoff(self):
		session = Mock()
		session.get.side_effect = [requests.exceptions.ConnectionError("x")] * 3
		stop_event = Mock(spec=threading.Event)
		stop_event.is_set.return_value = False
		stop_event.wait.return_value = True
		fetcher = FeedFetcher(session=session, retries=3, backoff=10, stop_event=stop_event)

		with pytest.raises(FetchError) as exc:
			fetcher.fetch("https://example.com/feed")

		assert exc.value.kind == FetchErrorKind.CANCELLED
		assert session.get.call_count == 1

	@pytest.mark.parametrize("body", [b"", b"   \n\t "])
	def test_empty_body(self, body):
		fetcher, _ = make_fetcher(make_response(content=body))

		with pytest.raises(FetchError) as exc:
			fetcher.fetch("https://example.com/feed")

		assert exc.value.kind == FetchErrorKind.EMPTY_BODY

	@pytest.mark.parametrize("body", [
		b"<!DOCTYPE html><html><body>Hi</body></html>",
		b"\xef\xbb\xbf  <!doctype HTML><html></html>",
		b"<HTML><head></head></HTML>",
	])
	def test_html_page_is_not_a_feed(self, body):
		fetcher, _ = make_fetcher(make_response(content=body))

		with pytest.raises(FetchError) as exc:
			fetcher.fetch("https://example.com/")

		assert exc.value.kind == FetchErrorKind.NOT_A_FEED
		assert "HTML instead of an RSS/Atom feed" in exc.value.user_message

	def test_non_xml_body_is_not_a_feed(self):
		fetcher, _ = make_fetcher(make_response(content=b'{"items": []}'))

		with pytest.raises(FetchError) as exc:
			fetcher.fetch("https://example.com/feed.json")

		assert exc.value.kind == FetchErrorKind.NOT_A_FEED
		assert exc.value.snippet.startswith('{"items"')


class TestSession:
	def test_sets_feed_headers_and_redirect_limit(self):
		session = build_session(user_agent="test-agent/1.0", max_redirects=5)

		assert session.headers["User-Agent"] == "test-agent/1.0"
		assert "application/rss+xml" in session.headers["Accept"]
		assert "application/atom+xml" in session.headers["Accept"]
		assert session.max_redirects == 5

	def test_unverified_session_disables_hostname_check(self):
		session = build_session(verify_tls=False)

		adapter = session.get_adapter("https://example.com/feed")
		context = adapter.poolmanager.connection_pool_kw["ssl_context"]
		assert session.verify is False
		assert context.check_hostname is False
		assert context.verify_mode == ssl.CERT_NONE
		assert context.minimum_version == ssl.TLSVersion.TLSv1_2

	def test_verified_session_keeps_hostname_check(self):
		context = build_session().get_adapter("https://example.com/feed").poolmanager.connection_pool_kw["ssl_context"]
		assert context.check_hostname is True
		assert context.verify_mode == ssl.CERT_REQUIRED


class TestSniffFormat:
	@pytest.mark.parametrize("body,expected", [
		(RSS, "rss"),
		(b'<?xml version="1.0"?><feed xmlns="http://www.w3.org/2005/Atom"></feed>', "atom"),
		(b'<rdf:RDF xmlns:rdf="x"></rdf:RDF>', "rdf"),
		(b"<!doctype html><html></html>", "html"),
		(b"<something/>", "xml"),
	])
	def test_sniff(self, body, expected):
		assert sniff_format(body) == expected


@pytest.fixture
def self_signed_feed(tmp_path):
	openssl = shutil.which("openssl")
	if openssl is None:
		pytest.skip("openssl binary not available")
	cert, key = tmp_path / "cert.pem", tmp_path / "key.pem"
	subprocess.run(
		[openssl, "req", "-x509", "-newkey", "rsa:2048", "-nodes", "-keyout", str(key), "-out", str(cert),
			"-days", "1", "-subj", "/CN=localhost"],
		check=True,
		capture_output=True,
	)

	class FeedHandler(BaseHTTPRequestHandler):
		def do_GET(self):
			self.send_response(200)
			self.send_header("Content-Type", "application/rss+xml")
			self.send_header("Content-Length", str(len(RSS)))
			self.end_headers()
			self.wfile.write(RSS)

		def log_message(self, format, *args):
			pass

	server = HTTPServer(("127.0.0.1", 0), FeedHandler)
	context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
	context.load_cert_chain(str(cert), str(key))
	server.socket = context.wrap_socket(server.socket, server_side=True)
	thread = threading.Thread(target=server.serve_forever, daemon=True)
	thread.start()
	yield f"https://127.0.0.1:{server.server_address[1]}/feed"
	server.shutdown()
	server.server_close()


@pytest.mark.filterwarnings("ignore::urllib3.exceptions.InsecureRequestWarning")
class TestSelfSignedServer:
	def test_unverified_fetch_succeeds(self, self_signed_feed):
		fetcher = FeedFetcher(verify_tls=False, retries=1, timeout=5)

		result = fetcher.fetch(self_signed_feed)

		assert result.content == RSS
		assert result.sniffed_format == "rss"

	def test_verified_fetch_is_a_tls_error(self, self_signed_feed):
		fetcher = FeedFetcher(retries=1, timeout=5)

		with pytest.raises(FetchError) as exc:
			fetcher.fetch(self_signed_feed)

		assert exc.value.kind == FetchErrorKind.TLS_ERROR
