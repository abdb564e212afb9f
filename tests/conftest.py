# tests/conftest.py
import os
import sys
from pathlib import Path

import pytest

# Settings are read at import time; keep tests off PostgreSQL, Redis and Celery
os.environ["DATABASE_URL"] = "sqlite:///./category_tree_test.db"
os.environ["LOG_TO_FILE"] = "false"
os.environ["CATEGORY_CACHE_ENABLED"] = "false"
os.environ["CATEGORY_EVENTS_ENABLED"] = "false"
os.environ["LOG_LEVEL"] = "warning"

# Add project root to Python path
project_root = Path(__file__).parent.parent.absolute()
sys.path.insert(0, str(project_root))

from app.db.base import Base, build_session_factory, create_db_engine
from app.db.models import Category  # noqa: F401
from app.db.tree_lock import TreeLock
from app.schemas.category import CategoryCreate
from app.services.category_events import CategoryEventBus
from app.services.category_service import CategoryService


@pytest.fixture(scope="function")
def database_url(tmp_path):
    """File-backed SQLite database, one per test."""
    return f"sqlite:///{tmp_path / 'categories.db'}"


@pytest.fixture(scope="function")
def db_engine(database_url):
    """Create a test database engine with the schema in place."""
    engine = create_db_engine(database_url)
    Base.metadata.create_all(engine)

    yield engine

    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    """Create a test database session."""
    session = session_factory()

    yield session

    session.close()


@pytest.fixture(scope="function")
def recorded_events():
    return []


@pytest.fixture(scope="function")
def event_bus(recorded_events):
    """Event bus that records every published event."""
    bus = CategoryEventBus()
    bus.subscribe(recorded_events.append)
    return bus


@pytest.fixture(scope="function")
def category_service(db_session, event_bus):
    """Create a category service for testing."""
    return CategoryService(db_session, event_bus=event_bus, tree_lock=TreeLock(timeout_seconds=5))


@pytest.fixture(scope="function")
def make_category(category_service):
    """Create a category by name under an optional parent, returning the stored row."""

    def _make(name, parent=None, **fields):
        parent_id = parent.id if parent is not None else None
        return category_service.create(CategoryCreate(name=name, parent_id=parent_id, **fields))

    return _make


@pytest.fixture(scope="function")
def sample_tree(make_category):
    """
    Electronics
      Phones
        Smartphones
      Laptops
    Books
    """
    electronics = make_category("Electronics")
    phones = make_category("Phones", electronics)
    laptops = make_category("Laptops", electronics)
    books = make_category("Books")
    smartphones = make_category("Smartphones", phones)
    return {
        "electronics": electronics.id,
        "phones": phones.id,
        "laptops": laptops.id,
        "books": books.id,
        "smartphones": smartphones.id,
    }
