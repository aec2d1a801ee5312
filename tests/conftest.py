import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy.pool import StaticPool

from backend.db import Base, make_engine, make_session_factory
from backend import models  # noqa: F401
from backend.store import FeedStore
from feed_fixtures import FakeFetcher


@pytest.fixture
def engine():
	eng = make_engine("sqlite://", poolclass=StaticPool)
	Base.metadata.create_all(bind=eng)
	yield eng
	eng.dispose()


@pytest.fixture
def store(engine):
	return FeedStore(make_session_factory(engine))


@pytest.fixture
def file_store(tmp_path):
	eng = make_engine(f"sqlite:///{tmp_path / 'feeds.db'}", connect_args={"timeout": 30})
	Base.metadata.create_all(bind=eng)
	yield FeedStore(make_session_factory(eng))
	eng.dispose()


@pytest.fixture
def fetcher():
	return FakeFetcher()
