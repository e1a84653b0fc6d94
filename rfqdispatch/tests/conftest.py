"""
Shared fixtures: a fixed clock, in-memory SQLite engines, and capability
caches that never touch a real database.
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from rfqdispatch.db.models import Base
from rfqdispatch.services.capability_gate import CapabilityCache
from rfqdispatch.tests.helpers import FULL_SCHEMA, NOW, StaticProbe


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def full_cache():
    return CapabilityCache(StaticProbe(FULL_SCHEMA))


@pytest.fixture
def empty_cache():
    return CapabilityCache(StaticProbe({}))


@pytest.fixture
def sqlite_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture
def migrated_engine(sqlite_engine):
    Base.metadata.create_all(sqlite_engine)
    return sqlite_engine


@pytest.fixture
def session_factory(sqlite_engine):
    return sessionmaker(bind=sqlite_engine, autocommit=False, autoflush=False)
