from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from app.core.config import settings

# Create declarative base for models
Base = declarative_base()


def create_db_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """
    Create a SQLAlchemy engine for the category store.

    Pool sizing only applies to server databases; SQLite (used for local runs
    and tests) gets a thread-shareable connection instead.
    """
    url = database_url or settings.DATABASE_URL
    echo = settings.DB_ECHO if echo is None else echo

    if url.startswith("sqlite"):
        return create_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False, "timeout": settings.TREE_LOCK_TIMEOUT_SECONDS},
        )

    return create_engine(
        url,
        pool_size=settings.DB_MIN_CONNECTIONS,
        max_overflow=settings.DB_MAX_CONNECTIONS - settings.DB_MIN_CONNECTIONS,
        echo=echo,
        pool_pre_ping=True,
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    """Create the session factory bound to an explicitly constructed engine."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
