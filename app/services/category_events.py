"""Notification hook for committed category tree mutations."""
from typing import Callable, List, Optional

from app.core.logging import get_logger
from app.schemas.category import CategoryEvent

logger = get_logger(__name__)

CategoryEventListener = Callable[[CategoryEvent], None]

SYNC_SEARCH_INDEX_TASK = "categories:sync_search_index"


class CategoryEventBus:
    """
    In-process fan-out of category events.

    Events are published only after the mutation has committed. A listener
    that raises is logged and skipped; it never undoes the committed change
    or starves the listeners after it.
    """

    def __init__(self):
        self._listeners: List[CategoryEventListener] = []

    def subscribe(self, listener: CategoryEventListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: CategoryEventListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def listeners(self) -> List[CategoryEventListener]:
        return list(self._listeners)

    def publish(self, event: CategoryEvent) -> None:
        logger.info(
            f"Category event {event.type.value}: category={event.category_id} "
            f"affected={len(event.affected_ids)}"
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.exception(f"Category event listener {listener!r} failed: {e}")


class CeleryEventPublisher:
    """Listener that forwards events to the search-index sync task"""

    def __init__(self, celery_app=None, task_name: str = SYNC_SEARCH_INDEX_TASK):
        if celery_app is None:
            # Import here to avoid circular imports
            from app.worker.celery_app import celery_app as default_app

            celery_app = default_app
        self.celery_app = celery_app
        self.task_name = task_name

    def __call__(self, event: CategoryEvent) -> None:
        result = self.celery_app.send_task(self.task_name, args=[event.model_dump(mode="json")])
        logger.debug(f"Queued {self.task_name} for {event.type.value}: {result.id}")


def build_event_bus(
    publish_to_celery: bool = False,
    extra_listeners: Optional[List[CategoryEventListener]] = None,
) -> CategoryEventBus:
    """Event bus wired with the configured listeners"""
    bus = CategoryEventBus()
    if publish_to_celery:
        bus.subscribe(CeleryEventPublisher())
    for listener in extra_listeners or []:
        bus.subscribe(listener)
    return bus
