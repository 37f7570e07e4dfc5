"""
Pytest fixtures for testing
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from fintrack.infrastructure.db import models  # noqa: F401  (registers tables)
from fintrack.infrastructure.db.session import Base


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with the full schema"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine) -> Session:
    """Create database session for tests"""
    SessionLocal = sessionmaker(bind=db_engine, autoflush=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite engine: lets two sessions see each other's commits"""
    engine = create_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def owner_id():
    """Sample owner ID for tests"""
    return 1


@pytest.fixture
def other_owner_id():
    return 2
