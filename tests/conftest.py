import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from lightrelay.core.security import Caller
from lightrelay.db.database import create_tables
from lightrelay.services.command_queue import DocumentCommandQueue


@pytest.fixture
def session_factory():
    """In-memory SQLite shared across executor threads"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    create_tables(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def buffered(session_factory):
    return DocumentCommandQueue(session_factory, timeout=5.0)


@pytest.fixture
def caller():
    return Caller(uid="guest-a")
