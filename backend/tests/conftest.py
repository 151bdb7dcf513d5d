"""
Fixtures partagees : base SQLite en memoire et stores branches dessus.
"""
import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

import weirdstats.domain.entities  # noqa: F401
from weirdstats.domain.services.activity_store import ActivityStore
from weirdstats.domain.services.job_store import JobStore
from weirdstats.domain.services.queue_store import QueueStore


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def activity_store(engine):
    return ActivityStore(engine)


@pytest.fixture
def queue_store(engine):
    return QueueStore(engine)


@pytest.fixture
def job_store(engine):
    return JobStore(engine)
