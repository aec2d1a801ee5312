from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship, Mapped

from .db import Base


def utcnow() -> datetime:
	return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
	"""SQLite hands back naive datetimes; treat them as UTC."""
	if value is None:
		return None
	if value.tzinfo is None:
		return value.replace(tzinfo=timezone.utc)
	return value.astimezone(timezone.utc)


class Feed(Base):
	__tablename__ = "feeds"
	__table_args__ = (
		UniqueConstraint("url", name="uq_feed_url"),
	)

	id: Mapped[int] = Column(Integer, primary_key=True)
	title: Mapped[str] = Column(String(500), nullable=False, default="")
	url: Mapped[str] = Column(String(2000), nullable=False)
	description: Mapped[Optional[str]] = Column(Text, nullable=True)
	site_url: Mapped[Optional[str]] = Column(String(2000), nullable=True)
	favicon_url: Mapped[Optional[str]] = Column(String(2000), nullable=True)
	is_active: Mapped[bool] = Column(Boolean, nullable=False, default=True, index=True)
	created_at: Mapped[datetime] = Column(DateTime(timezone=True), default=utcnow, nullable=False)
	last_fetched_at: Mapped[Optional[datetime]] = Column(DateTime(timezone=True), nullable=True)

	articles = relationship("Article", back_populates="feed", passive_deletes=True)

	def to_dict(self):
		return {
			"id": self.id,
			"title": self.title,
			"url": self.url,
			"description": self.description,
			"site_url": self.site_url,
			"favicon_url": self.favicon_url,
			"is_active": self.is_active,
			"last_fetched_at": self.last_fetched_at.isoformat() if self.last_fetched_at else None,
		}


class Article(Base):
	__tablename__ = "articles"
	# url is unique across all feeds, not per feed
	__table_args__ = (
		UniqueConstraint("url", name="uq_article_url"),
	)

	id: Mapped[int] = Column(Integer, primary_key=True)
	feed_id: Mapped[int] = Column(Integer, ForeignKey("feeds.id", ondelete="CASCADE"), nullable=False, index=True)
	title: Mapped[str] = Column(String(1000), nullable=False)
	url: Mapped[str] = Column(String(2000), nullable=False)
	description: Mapped[Optional[str]] = Column(Text, nullable=True)
	author: Mapped[Optional[str]] = Column(String(500), nullable=True)
	image_url: Mapped[Optional[str]] = Column(String(2000), nullable=True)
	published_at: Mapped[datetime] = Column(DateTime(timezone=True), nullable=False, index=True)
	created_at: Mapped[datetime] = Column(DateTime(timezone=True), default=utcnow, nullable=False)

	feed = relationship("Feed", back_populates="articles")

	def to_dict(self):
		return {
			"id": self.id,
			"feed_id": self.feed_id,
			"title": self.title,
			"url": self.url,
			"description": (self.description[:500] + "...") if self.description and len(self.description) > 500 else self.description,
			"author": self.author,
			"image_url": self.image_url,
			"published_at": self.published_at.isoformat() if self.published_at else None,
		}


class DeletedArticle(Base):
	"""Tombstone that keeps a deleted article's URL from being ingested again."""

	__tablename__ = "deleted_articles"

	id: Mapped[int] = Column(Integer, primary_key=True)
	url: Mapped[str] = Column(String(2000), nullable=False, index=True)
	deleted_at: Mapped[datetime] = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
