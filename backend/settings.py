from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parents[1]

load_dotenv(PROJECT_ROOT / ".env")

DEFAULT_USER_AGENT = (
	"Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
	"AppleWebKit/537.36 (KHTML, like Gecko) "
	"Chrome/120.0.0.0 Safari/537.36"
)


def _default_sqlite_url() -> str:
	data_dir = PROJECT_ROOT / "data"
	data_dir.mkdir(parents=True, exist_ok=True)
	return f"sqlite:///{data_dir / 'app.db'}"


def _env_bool(name: str, default: bool) -> bool:
	raw = os.getenv(name)
	if raw is None or raw.strip() == "":
		return default
	return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
	raw = os.getenv(name)
	if raw is None or raw.strip() == "":
		return default
	return int(raw)


@dataclass(frozen=True)
class Settings:
	database_url: str
	redis_url: str = "redis://localhost:6379/0"
	fetch_timeout: float = 90.0
	fetch_retries: int = 3
	retry_backoff: float = 1.0
	max_redirects: int = 5
	verify_tls: bool = True
	user_agent: str = DEFAULT_USER_AGENT
	ingest_window_days: int = 14
	max_workers: int = 1
	article_retention_days: int = 30
	tombstone_retention_days: Optional[int] = None
	crawl_interval_minutes: int = 60


def load_settings() -> Settings:
	return Settings(
		database_url=os.getenv("DATABASE_URL") or _default_sqlite_url(),
		redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
		fetch_timeout=float(os.getenv("FEED_FETCH_TIMEOUT", "90")),
		fetch_retries=int(os.getenv("FEED_FETCH_RETRIES", "3")),
		retry_backoff=float(os.getenv("FEED_RETRY_BACKOFF", "1.0")),
		max_redirects=int(os.getenv("FEED_MAX_REDIRECTS", "5")),
		verify_tls=_env_bool("FEED_VERIFY_TLS", True),
		user_agent=os.getenv("FEED_USER_AGENT", DEFAULT_USER_AGENT),
		ingest_window_days=int(os.getenv("INGEST_WINDOW_DAYS", "14")),
		max_workers=max(1, int(os.getenv("INGEST_MAX_WORKERS", "1"))),
		article_retention_days=int(os.getenv("ARTICLE_RETENTION_DAYS", "30")),
		tombstone_retention_days=_env_int("TOMBSTONE_RETENTION_DAYS", None),
		crawl_interval_minutes=int(os.getenv("CRAWL_INTERVAL_MINUTES", "60")),
	)


def setup_logging(level: int | str = "INFO") -> None:
	"""Configure the root logger for CLI, scheduler and worker processes."""
	logging.basicConfig(
		level=level,
		format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
	)
