"""
Serialization of tree-mutating operations.

Every create/move/delete/rebuild runs inside tree_transaction(): the lock is
taken before current boundaries are read and released only after the commit
(or rollback), so two writers can never interleave their range shifts.
"""
import threading
from contextlib import contextmanager
from typing import Callable, Dict, Iterator, Optional

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.exceptions import ConflictError, StorageError
from app.core.logging import get_logger

logger = get_logger(__name__)

# Process-level locks for dialects without advisory locks, one per database
_local_locks: Dict[str, threading.Lock] = {}
_local_locks_guard = threading.Lock()


def _local_lock_for(session: Session) -> threading.Lock:
    url = session.get_bind().url.render_as_string(hide_password=False)
    with _local_locks_guard:
        if url not in _local_locks:
            _local_locks[url] = threading.Lock()
        return _local_locks[url]


class TreeLock:
    """
    Whole-tree exclusive lock.

    PostgreSQL uses a transaction-scoped advisory lock, so it is shared by
    every process and released by the commit itself. Other dialects (SQLite)
    fall back to a per-database in-process lock.
    """

    def __init__(self, key: Optional[int] = None, timeout_seconds: Optional[float] = None):
        self.key = settings.TREE_LOCK_KEY if key is None else key
        self.timeout_seconds = (
            settings.TREE_LOCK_TIMEOUT_SECONDS if timeout_seconds is None else timeout_seconds
        )

    def acquire(self, session: Session) -> Optional[Callable[[], None]]:
        """Take the lock; returns a release callback when one is needed."""
        if session.get_bind().dialect.name == "postgresql":
            timeout_ms = int(self.timeout_seconds * 1000)
            # SET LOCAL does not accept bind parameters
            session.execute(text(f"SET LOCAL lock_timeout = '{timeout_ms}ms'"))
            session.execute(
                text(f"SET LOCAL statement_timeout = '{int(settings.DB_STATEMENT_TIMEOUT_MS)}ms'")
            )
            session.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": self.key})
            return None

        lock = _local_lock_for(session)
        if not lock.acquire(timeout=self.timeout_seconds):
            raise StorageError(
                f"Timed out after {self.timeout_seconds}s waiting for the category tree lock"
            )
        return lock.release


@contextmanager
def tree_transaction(session: Session, lock: Optional[TreeLock] = None) -> Iterator[Session]:
    """
    Unit of work for a tree mutation.

    Commits on a clean exit and rolls back on every error path. Storage
    failures surface as ConflictError (integrity violations) or StorageError
    (everything else, including lock and statement timeouts).
    """
    lock = lock or TreeLock()
    release = None
    try:
        release = lock.acquire(session)
        yield session
        session.commit()
    except IntegrityError as e:
        session.rollback()
        logger.warning(f"Category tree transaction hit an integrity conflict: {e.orig}")
        raise ConflictError(f"Conflicting concurrent change: {e.orig}") from e
    except OperationalError as e:
        session.rollback()
        logger.error(f"Category tree transaction failed or timed out: {e.orig}")
        raise StorageError(f"Transaction failed or timed out: {e.orig}") from e
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Category tree transaction failed: {e}")
        raise StorageError(f"Transaction failed: {e}") from e
    except Exception:
        session.rollback()
        raise
    finally:
        if release is not None:
            release()
