# app/worker/tasks/category_events.py
"""
Celery tasks consuming category tree events.
"""
import logging
from typing import Any, Dict

from celery import shared_task
from pydantic import ValidationError

from app.schemas.category import CategoryEvent, CategoryEventType

logger = logging.getLogger(__name__)


@shared_task(name="categories:sync_search_index")
def sync_search_index(event_data: Dict[str, Any]):
    """
    Hand a committed tree change over to the search indexer.

    The index stores category paths per product, so every affected category
    needs reindexing; a rebuild invalidates all of them. A payload that does
    not parse is reported, not retried.

    Args:
        event_data: CategoryEvent serialized in JSON mode
    """
    try:
        event = CategoryEvent.model_validate(event_data)
    except ValidationError as e:
        logger.error(f"Discarding malformed category event: {e}")
        return {"status": "error", "error": str(e)}

    full_reindex = event.type == CategoryEventType.REBUILT

    if full_reindex:
        logger.info(f"Category tree rebuilt at {event.occurred_at}, full reindex required")
    else:
        logger.info(
            f"Category {event.type.value} event for {event.category_id} "
            f"({event.path}): {len(event.affected_ids)} categories to reindex"
        )

    return {
        "status": "success",
        "event": event.type.value,
        "full_reindex": full_reindex,
        "category_ids": [str(category_id) for category_id in event.affected_ids],
    }
