# tests/services/test_events_cache.py
import json
from unittest.mock import MagicMock, patch
from uuid import uuid4

import redis

from app.schemas.category import CategoryEvent, CategoryEventType, CategoryUpdate
from app.services.cache_service import CategoryCacheService
from app.services.category_events import (
    SYNC_SEARCH_INDEX_TASK,
    CategoryEventBus,
    CeleryEventPublisher,
    build_event_bus,
)
from app.services.category_service import CategoryService


class FakePipeline:
    """WATCH/MULTI/EXEC over FakeRedis, failing EXEC if a watched key changed."""

    def __init__(self, client):
        self.client = client
        self.watched = {}
        self.queued = []
        self.buffering = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.watched, self.queued = {}, []
        return False

    def watch(self, *keys):
        self.watched = {key: self.client.store.get(key) for key in keys}

    def get(self, key):
        return self.client.get(key)

    def multi(self):
        self.buffering = True

    def setex(self, key, ttl, value):
        self.queued.append((key, value))

    def execute(self):
        for key, seen in self.watched.items():
            if self.client.store.get(key) != seen:
                raise redis.WatchError("Watched variable changed.")
        for key, value in self.queued:
            self.client.store[key] = value
        return [True] * len(self.queued)


class FakeRedis:
    """Just enough of the redis client for the category cache."""

    def __init__(self):
        self.store = {}

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value

    def incr(self, key):
        self.store[key] = str(int(self.store.get(key, 0)) + 1)
        return int(self.store[key])

    def pipeline(self):
        return FakePipeline(self)

    def scan_iter(self, match=None):
        prefix = match.rstrip("*") if match else ""
        return [key for key in list(self.store) if key.startswith(prefix)]

    def delete(self, *keys):
        for key in keys:
            self.store.pop(key, None)
        return len(keys)


def test_failing_listener_does_not_stop_others():
    bus = CategoryEventBus()
    received = []

    def broken(event):
        raise RuntimeError("indexer down")

    bus.subscribe(broken)
    bus.subscribe(received.append)
    event = CategoryEvent(type=CategoryEventType.CREATED, category_id=uuid4())

    bus.publish(event)

    assert received == [event]


def test_subscribe_is_idempotent_and_unsubscribe_works():
    bus = CategoryEventBus()
    listener = MagicMock()

    bus.subscribe(listener)
    bus.subscribe(listener)
    assert bus.listeners == [listener]

    bus.unsubscribe(listener)
    bus.publish(CategoryEvent(type=CategoryEventType.REBUILT))
    listener.assert_not_called()


def test_celery_publisher_sends_serialized_event():
    celery_app = MagicMock()
    publisher = CeleryEventPublisher(celery_app=celery_app)
    category_id = uuid4()
    event = CategoryEvent(
        type=CategoryEventType.MOVED,
        category_id=category_id,
        path="books/phones",
        affected_ids=[category_id],
    )

    publisher(event)

    celery_app.send_task.assert_called_once()
    task_name = celery_app.send_task.call_args.args[0]
    payload = celery_app.send_task.call_args.kwargs["args"][0]
    assert task_name == SYNC_SEARCH_INDEX_TASK
    assert payload["type"] == "moved"
    assert payload["affected_ids"] == [str(category_id)]


def test_build_event_bus_attaches_listeners():
    listener = MagicMock()

    bus = build_event_bus(publish_to_celery=False, extra_listeners=[listener])

    assert bus.listeners == [listener]


def test_cache_round_trip_and_invalidation():
    client = FakeRedis()
    cache = CategoryCacheService(client=client, ttl_minutes=5)
    category_id, child_id = uuid4(), uuid4()

    assert cache.get_descendant_ids(category_id) is None
    assert cache.set_descendant_ids(category_id, [category_id, child_id])
    assert cache.get_descendant_ids(category_id) == [category_id, child_id]
    assert json.loads(client.store[f"category:descendant-ids:{category_id}"]) == [
        str(category_id),
        str(child_id),
    ]

    cache.handle_event(CategoryEvent(type=CategoryEventType.DELETED))

    assert cache.get_descendant_ids(category_id) is None


def test_cache_degrades_on_redis_errors():
    client = MagicMock()
    client.get.side_effect = redis.ConnectionError("down")
    client.setex.side_effect = redis.ConnectionError("down")
    cache = CategoryCacheService(client=client)

    assert cache.get_descendant_ids(uuid4()) is None
    assert cache.set_descendant_ids(uuid4(), []) is False


def test_service_uses_cache_and_events_invalidate_it(db_session, sample_tree):
    cache = CategoryCacheService(client=FakeRedis())
    bus = CategoryEventBus()
    bus.subscribe(cache.handle_event)
    service = CategoryService(db_session, event_bus=bus, cache=cache)

    ids = service.get_category_and_descendant_ids(sample_tree["phones"])
    assert ids == [sample_tree["phones"], sample_tree["smartphones"]]
    assert cache.get_descendant_ids(sample_tree["phones"]) == ids

    service.delete(sample_tree["smartphones"])

    assert cache.get_descendant_ids(sample_tree["phones"]) is None
    assert service.get_category_and_descendant_ids(sample_tree["phones"]) == [sample_tree["phones"]]


def test_update_event_lists_rewritten_subtree(category_service, sample_tree, recorded_events):
    recorded_events.clear()

    category_service.update(sample_tree["phones"], CategoryUpdate(slug="mobile"))

    assert recorded_events[0].type == CategoryEventType.UPDATED
    assert recorded_events[0].affected_ids == [sample_tree["phones"], sample_tree["smartphones"]]


def test_write_back_is_dropped_after_invalidation():
    cache = CategoryCacheService(client=FakeRedis())
    category_id = uuid4()

    generation = cache.current_generation()
    cache.handle_event(CategoryEvent(type=CategoryEventType.MOVED))

    assert cache.set_descendant_ids(category_id, [category_id], generation=generation) is False
    assert cache.get_descendant_ids(category_id) is None
    assert cache.set_descendant_ids(category_id, [category_id], generation=cache.current_generation())


def test_mutation_committed_mid_read_is_not_cached(category_service, db_session, sample_tree):
    cache = CategoryCacheService(client=FakeRedis())
    category_service.event_bus.subscribe(cache.handle_event)
    reader = CategoryService(db_session, cache=cache)
    read_subtree = reader.get_subtree

    def read_then_writer_commits(category_id):
        rows = read_subtree(category_id)
        category_service.move(sample_tree["smartphones"], sample_tree["books"])
        return rows

    with patch.object(reader, "get_subtree", side_effect=read_then_writer_commits):
        stale = reader.get_category_and_descendant_ids(sample_tree["phones"])

    assert stale == [sample_tree["phones"], sample_tree["smartphones"]]
    assert cache.get_descendant_ids(sample_tree["phones"]) is None
    assert reader.get_category_and_descendant_ids(sample_tree["phones"]) == [sample_tree["phones"]]
