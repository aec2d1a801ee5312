from unittest.mock import patch

import pytest
from sqlalchemy import select

from backend.app import create_app
from backend.models import Article, DeletedArticle
from crawler.errors import FetchError, FetchErrorKind
from crawler.ingest import FeedIngestor
from feed_fixtures import days_ago, rss

FEED_URL = "https://news.example.com/rss"


@pytest.fixture
def ingestor(store, fetcher):
	return FeedIngestor(store, fetcher)


@pytest.fixture
def client(ingestor):
	app = create_app(ingestor=ingestor)
	app.config["TESTING"] = True
	return app.test_client()


def test_health(client):
	resp = client.get("/health")
	assert resp.status_code == 200
	assert resp.get_json() == {"status": "ok"}


def test_status_counts(client, store):
	store.add_feed(FEED_URL)
	body = client.get("/status").get_json()
	assert body["feeds"] == 1
	assert body["articles"] == 0
	assert body["last_fetched_at"] is None


class TestFeeds:
	def test_subscribe_new_feed(self, client, fetcher, store):
		fetcher.documents[FEED_URL] = rss(("https://news.example.com/1", "One", days_ago(1)), title="News")

		resp = client.post("/feeds", json={"url": FEED_URL})

		assert resp.status_code == 201
		assert resp.get_json()["title"] == "News"
		assert len(store.list_feeds()) == 1

	def test_subscribe_existing_feed(self, client, fetcher, store):
		store.add_feed(FEED_URL, title="Known")

		resp = client.post("/feeds", json={"url": FEED_URL})

		assert resp.status_code == 200
		assert resp.get_json()["title"] == "Known"
		assert fetcher.calls == []

	def test_subscribe_requires_url(self, client):
		assert client.post("/feeds", json={}).status_code == 400

	def test_subscribe_to_a_web_page(self, client, fetcher):
		fetcher.documents[FEED_URL] = FetchError(FetchErrorKind.NOT_A_FEED, "html", url=FEED_URL)

		resp = client.post("/feeds", json={"url": FEED_URL})

		assert resp.status_code == 422
		assert resp.get_json()["kind"] == "not_a_feed"

	def test_list_feeds(self, client, store):
		store.add_feed(FEED_URL, title="News")
		body = client.get("/feeds").get_json()
		assert [f["url"] for f in body] == [FEED_URL]

	def test_refresh(self, client, fetcher, store):
		feed = store.add_feed(FEED_URL)
		fetcher.documents[FEED_URL] = rss(("https://news.example.com/1", "One", days_ago(1)))

		resp = client.post(f"/feeds/{feed.id}/refresh")

		assert resp.status_code == 200
		assert resp.get_json()["inserted"] == 1

	def test_refresh_failure(self, client, fetcher, store):
		feed = store.add_feed(FEED_URL)
		fetcher.documents[FEED_URL] = FetchError(FetchErrorKind.FORBIDDEN, "403", url=FEED_URL, status_code=403)

		resp = client.post(f"/feeds/{feed.id}/refresh")

		assert resp.status_code == 422
		body = resp.get_json()
		assert body["status"] == "failed"
		assert body["kind"] == "forbidden"

	def test_refresh_unknown_feed(self, client):
		assert client.post("/feeds/999/refresh").status_code == 404

	def test_resync_unknown_feed(self, client):
		assert client.post("/feeds/999/resync_dates").status_code == 404

	def test_delete_feed(self, client, store):
		feed = store.add_feed(FEED_URL)
		assert client.delete(f"/feeds/{feed.id}").status_code == 204
		assert client.delete(f"/feeds/{feed.id}").status_code == 404


class TestArticles:
	def test_delete_leaves_tombstone(self, client, fetcher, store, ingestor):
		feed = store.add_feed(FEED_URL)
		fetcher.documents[FEED_URL] = rss(("https://news.example.com/1", "One", days_ago(1)))
		ingestor.update_feed(feed)
		with store.session() as s:
			article_id = s.scalar(select(Article.id))

		assert client.delete(f"/articles/{article_id}").status_code == 204
		with store.session() as s:
			assert list(s.scalars(select(DeletedArticle.url))) == ["https://news.example.com/1"]
		assert client.delete(f"/articles/{article_id}").status_code == 404

	def test_admin_cleanup(self, client, fetcher, store, ingestor):
		feed = store.add_feed(FEED_URL)
		fetcher.documents[FEED_URL] = rss(
			("https://news.example.com/old", "Old", days_ago(10)),
			("https://news.example.com/new", "New", days_ago(1)),
		)
		ingestor.update_feed(feed)

		resp = client.post("/admin/cleanup?days=5")

		assert resp.status_code == 200
		assert resp.get_json()["articles_deleted"] == 1
		assert store.load_article_urls(feed.id) == {"https://news.example.com/new"}


def test_crawl_enqueues(client):
	with patch("tasks.schedule.update_all_feeds") as task:
		resp = client.post("/crawl")
	assert resp.status_code == 200
	assert resp.get_json() == {"enqueued": True}
	task.delay.assert_called_once_with()
