from __future__ import annotations
import os
from typing import Optional
from flask import Flask, jsonify, request
from flask_cors import CORS
from crawler.errors import FeedNotFound, FetchError, ParseError
from crawler.ingest import FeedIngestor
from .db import init_db
from .settings import load_settings
from .store import FeedStore
def create_app(ingestor: Optional[FeedIngestor] = None) -> Flask:
	app = Flask(__name__)
	CORS(app)
	settings = load_settings()
	if ingestor is None:
		init_db()
		ingestor = FeedIngestor.from_settings(settings, store=FeedStore())
	store = ingestor.store

	@app.errorhandler(FeedNotFound)
	def feed_not_found(e):
		return jsonify({"error": str(e)}), 404

	@app.errorhandler(FetchError)
	@app.errorhandler(ParseError)
	def feed_unreadable(e):
		return jsonify({"error": e.user_message, "kind": e.kind.value}), 422

	@app.route("/health", methods=["GET"])  # simple health check
	def health():
		return jsonify({"status": "ok"})

	@app.route("/status", methods=["GET"])  # row counts and last poll time
	def status():
		return jsonify(store.stats())

	@app.route("/feeds", methods=["GET"])
	def list_feeds():
		return jsonify([f.to_dict() for f in store.list_feeds()])

	@app.route("/feeds", methods=["POST"])  # subscribe; fetches the feed once
	def add_feed():
		payload = request.get_json(force=True) or {}
		url: str = (payload.get("url") or "").strip()
		if not url:
			return jsonify({"error": "url is required"}), 400
		existing = store.get_feed_by_url(url)
		feed = ingestor.subscribe(url, title=payload.get("title"))
		return jsonify(feed.to_dict()), (200 if existing else 201)

	@app.route("/feeds/<int:feed_id>/refresh", methods=["POST"])  # poll one feed now
	def refresh_feed(feed_id: int):
		feed = store.get_feed(feed_id)
		if feed is None:
			raise FeedNotFound(feed_id)
		result = ingestor.update_feed(feed)
		body = {
			"status": result.status.value,
			"fetched": result.fetched,
			"inserted": result.inserted,
			"skipped_conflicts": result.skipped_conflicts,
		}
		if not result.ok:
			body.update({"error": result.error, "kind": result.error_kind})
			return jsonify(body), 422
		return jsonify(body)

	@app.route("/feeds/<int:feed_id>/resync_dates", methods=["POST"])
	def resync_dates(feed_id: int):
		return jsonify({"updated": ingestor.resync_article_dates(feed_id)})

	@app.route("/feeds/<int:feed_id>", methods=["DELETE"])
	def delete_feed(feed_id: int):
		if not store.delete_feed(feed_id):
			raise FeedNotFound(feed_id)
		return ("", 204)

	@app.route("/articles/<int:article_id>", methods=["DELETE"])  # leaves a tombstone behind
	def delete_article(article_id: int):
		if not store.delete_article(article_id):
			return jsonify({"error": "not found"}), 404
		return ("", 204)

	@app.route("/admin/cleanup", methods=["POST"])
	def admin_cleanup():
		days: Optional[int] = request.args.get("days", default=settings.article_retention_days, type=int)
		return jsonify(store.apply_retention(days, settings.tombstone_retention_days))

	@app.route("/crawl", methods=["POST"])  # trigger a full update via Celery
	def trigger_crawl():
		try:
			from tasks.schedule import update_all_feeds  # lazy import to avoid overhead
			update_all_feeds.delay()
			return jsonify({"enqueued": True})
		except Exception as e:
			return jsonify({"enqueued": False, "error": str(e)}), 500
	return app
if __name__ == "__main__":
	port = int(os.getenv("PORT", "5000"))
	app = create_app()
	app.run(host="0.0.0.0", port=port)
