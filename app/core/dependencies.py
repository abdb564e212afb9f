from contextlib import contextmanager
from typing import Iterator, Optional

from fastapi import Depends, Request
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings
from app.core.logging import get_logger
from app.db.base import build_session_factory, create_db_engine
from app.services.cache_service import CategoryCacheService
from app.services.category_events import CategoryEventBus, build_event_bus
from app.services.category_service import CategoryService

logger = get_logger(__name__)


def build_cache_service() -> Optional[CategoryCacheService]:
    """Descendant-id cache, or None when disabled by configuration"""
    if not settings.CATEGORY_CACHE_ENABLED:
        return None
    return CategoryCacheService()


def wire_event_bus(cache: Optional[CategoryCacheService] = None) -> CategoryEventBus:
    """Event bus with the Celery publisher and cache invalidation attached as configured"""
    listeners = [cache.handle_event] if cache else []
    return build_event_bus(
        publish_to_celery=settings.CATEGORY_EVENTS_ENABLED,
        extra_listeners=listeners,
    )


@contextmanager
def session_scope(session_factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    """Create a database session with proper cleanup (CLI and worker use)"""
    if session_factory is None:
        session_factory = build_session_factory(create_db_engine())
    db_session = session_factory()
    try:
        yield db_session
    except Exception:
        db_session.rollback()
        raise
    finally:
        db_session.close()


@contextmanager
def category_service_scope(
    session_factory: Optional[sessionmaker] = None,
    event_bus: Optional[CategoryEventBus] = None,
) -> Iterator[CategoryService]:
    """CategoryService bound to a fresh session, for code running outside a request"""
    with session_scope(session_factory) as db_session:
        cache = build_cache_service()
        yield CategoryService(
            db_session=db_session,
            event_bus=event_bus or wire_event_bus(cache),
            cache=cache,
        )


def get_db(request: Request) -> Iterator[Session]:
    """FastAPI dependency for database session"""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_category_service(
    request: Request, db: Session = Depends(get_db)
) -> CategoryService:
    """Per-request CategoryService sharing the app-wide bus, cache and lock"""
    state = request.app.state
    return CategoryService(
        db_session=db,
        event_bus=state.event_bus,
        cache=state.cache,
        tree_lock=state.tree_lock,
    )
