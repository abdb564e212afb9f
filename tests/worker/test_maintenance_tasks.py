# tests/worker/test_maintenance_tasks.py
from contextlib import contextmanager
from unittest.mock import patch
from uuid import uuid4

import pytest

from app.db.models.category import Category
from app.schemas.category import CategoryEvent, CategoryEventType
from app.services.category_service import CategoryService
from app.worker.schedulers import get_beat_schedule
from app.worker.tasks.category_events import sync_search_index
from app.worker.tasks.maintenance import purge_deleted_categories, verify_category_tree


@pytest.fixture(scope="function")
def worker_services(session_factory):
    """Point the maintenance tasks at the test database."""

    @contextmanager
    def scope():
        session = session_factory()
        try:
            yield CategoryService(session)
        finally:
            session.close()

    with patch("app.worker.tasks.maintenance.category_service_scope", scope):
        yield


def test_purge_task_respects_retention(worker_services, category_service, sample_tree):
    category_service.delete(sample_tree["phones"])

    kept = purge_deleted_categories.run()
    assert kept == {"status": "success", "purged": 0, "remaining": 3}

    purged = purge_deleted_categories.run(retention_days=0)
    assert purged["status"] == "success"
    assert purged["purged"] == 2


def test_verify_task_reports_healthy_tree(worker_services, sample_tree):
    result = verify_category_tree.run()

    assert result == {"status": "healthy", "violations": []}


def test_verify_task_rebuilds_corrupt_tree(worker_services, sample_tree, db_session):
    laptops = db_session.get(Category, sample_tree["laptops"])
    laptops.left, laptops.right = 40, 41
    db_session.commit()

    reported = verify_category_tree.run(auto_rebuild=False)
    assert reported["status"] == "corrupt"

    rebuilt = verify_category_tree.run(auto_rebuild=True)
    assert rebuilt["status"] == "rebuilt"
    assert rebuilt["remaining_violations"] == []
    assert rebuilt["rebuild"]["total"] == 5


def test_sync_search_index_task():
    category_id = uuid4()
    event = CategoryEvent(
        type=CategoryEventType.MOVED,
        category_id=category_id,
        path="books/phones",
        affected_ids=[category_id],
    )

    result = sync_search_index.run(event.model_dump(mode="json"))

    assert result["status"] == "success"
    assert result["full_reindex"] is False
    assert result["category_ids"] == [str(category_id)]


def test_sync_search_index_full_reindex_on_rebuild():
    event = CategoryEvent(type=CategoryEventType.REBUILT)

    result = sync_search_index.run(event.model_dump(mode="json"))

    assert result["full_reindex"] is True


def test_beat_schedule_contains_maintenance_tasks():
    schedule = get_beat_schedule()

    assert schedule["purge-deleted-categories"]["task"] == "maintenance:purge_deleted_categories"
    assert schedule["verify-category-tree"]["task"] == "maintenance:verify_category_tree"


def test_sync_search_index_reports_malformed_event():
    result = sync_search_index.run({"type": "renamed"})

    assert result["status"] == "error"
