# tests/services/test_concurrency.py
"""Concurrent tree mutations must serialize, never interleave their shifts."""
import threading
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from app.core.exceptions import CategoryTreeError, StorageError, ValidationError
from app.db.models.category import Category
from app.db.repositories.category_repository import CategoryRepository
from app.db.tree_lock import TreeLock, _local_lock_for
from app.schemas.category import CategoryCreate
from app.services.category_service import CategoryService


def run_concurrently(session_factory, operations):
    """Run each operation(service) in its own thread with its own session."""
    barrier = threading.Barrier(len(operations))
    outcomes = [None] * len(operations)

    def worker(index, operation):
        session = session_factory()
        service = CategoryService(session, tree_lock=TreeLock(timeout_seconds=10))
        try:
            barrier.wait()
            outcomes[index] = operation(service)
        except CategoryTreeError as e:
            outcomes[index] = e
        finally:
            session.close()

    threads = [
        threading.Thread(target=worker, args=(index, operation))
        for index, operation in enumerate(operations)
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return outcomes


def test_opposite_moves_serialize(category_service, session_factory, make_category):
    """A under B and B under A at once: one commits, the other sees the cycle."""
    a = make_category("A")
    b = make_category("B")

    outcomes = run_concurrently(
        session_factory,
        [
            lambda service: service.move(a.id, b.id),
            lambda service: service.move(b.id, a.id),
        ],
    )

    errors = [outcome for outcome in outcomes if isinstance(outcome, Exception)]
    assert len(errors) == 1
    assert isinstance(errors[0], ValidationError)
    assert category_service.verify_tree() == []
    roots = category_service.get_roots()
    assert len(roots) == 1
    assert len(category_service.get_subtree(roots[0].id)) == 2


def test_overlapping_moves_and_creates(category_service, session_factory, sample_tree):
    operations = [
        lambda service: service.move(sample_tree["phones"], sample_tree["books"]),
        lambda service: service.move(sample_tree["laptops"], sample_tree["smartphones"]),
        lambda service: service.create(CategoryCreate(name="Audio"), sample_tree["electronics"]),
        lambda service: service.create(CategoryCreate(name="Comics", position="first"), sample_tree["books"]),
        lambda service: service.delete(sample_tree["smartphones"]),
    ]

    outcomes = run_concurrently(session_factory, operations)

    # Whatever order they ran in, each either committed fully or failed cleanly
    for outcome in outcomes:
        assert outcome is not None
    assert category_service.verify_tree() == []


def boundary_snapshot(db_session):
    rows = db_session.query(
        Category.id, Category.left, Category.right, Category.level, Category.path, Category.version
    ).order_by(Category.left)
    return [tuple(row) for row in rows]


def test_failed_move_rolls_back_every_shift(category_service, sample_tree, db_session, recorded_events):
    """relocate_subtree runs after the detach and the shrink/grow shifts have been issued."""
    before = boundary_snapshot(db_session)
    recorded_events.clear()
    failure = OperationalError("UPDATE categories ...", {}, Exception("canceling statement due to statement timeout"))

    with patch.object(CategoryRepository, "relocate_subtree", side_effect=failure):
        with pytest.raises(StorageError):
            category_service.move(sample_tree["phones"], sample_tree["books"])

    assert boundary_snapshot(db_session) == before
    assert category_service.verify_tree() == []
    assert recorded_events == []


def test_lock_timeout_raises_storage_error_without_writing(db_session, sample_tree):
    before = boundary_snapshot(db_session)
    held = _local_lock_for(db_session)
    held.acquire()
    try:
        service = CategoryService(db_session, tree_lock=TreeLock(timeout_seconds=0.1))
        with pytest.raises(StorageError):
            service.create(CategoryCreate(name="Audio"), sample_tree["electronics"])
    finally:
        held.release()

    assert boundary_snapshot(db_session) == before
    assert db_session.query(Category).filter(Category.name == "Audio").count() == 0
