from __future__ import annotations

from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .settings import load_settings

Base = declarative_base()

_engine: Optional[Engine] = None
_SessionLocal: Optional[sessionmaker] = None


def make_engine(database_url: str, **kwargs) -> Engine:
	# check_same_thread is needed for SQLite when feeds are ingested from a thread pool
	connect_args = kwargs.pop("connect_args", {})
	if database_url.startswith("sqlite"):
		connect_args.setdefault("check_same_thread", False)
	return create_engine(database_url, echo=False, future=True, connect_args=connect_args, **kwargs)


def make_session_factory(engine: Engine) -> sessionmaker:
	return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False, future=True)


def get_engine() -> Engine:
	global _engine
	if _engine is None:
		_engine = make_engine(load_settings().database_url)
	return _engine


def get_session_factory() -> sessionmaker:
	global _SessionLocal
	if _SessionLocal is None:
		_SessionLocal = make_session_factory(get_engine())
	return _SessionLocal


def get_session() -> Session:
	return get_session_factory()()


def init_db(engine: Optional[Engine] = None) -> None:
	"""Create tables for SQLite deployments; server databases go through alembic."""
	from . import models  # noqa: F401  register mappers

	engine = engine or get_engine()
	if engine.dialect.name == "sqlite":
		Base.metadata.create_all(bind=engine)
