# app/worker/celery_app.py
"""
Celery application configuration for the category tree service.
"""
from celery import Celery
from celery.signals import worker_ready
import logging
from app.core.config import settings

logger = logging.getLogger(__name__)

# Create Celery app
celery_app = Celery(
    "category_tree",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=[
        "app.worker.tasks.category_events",
        "app.worker.tasks.maintenance",
    ],
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_time_limit=1800,  # 30 minutes time limit per task
    task_soft_time_limit=1500,  # 25 minutes soft time limit
    # Queue configuration
    task_routes={
        "categories:*": {"queue": "category_events"},
        "maintenance:*": {"queue": "maintenance"},
    },
    # Define queues
    task_queues={
        "celery": {
            "exchange": "celery",
            "routing_key": "celery",
        },
        "category_events": {
            "exchange": "categories",
            "routing_key": "categories.events",
            "priority": 10,  # Higher priority
        },
        "maintenance": {
            "exchange": "maintenance",
            "routing_key": "maintenance.tree",
            "priority": 5,  # Lower priority
        },
    },
)

# Load periodic tasks from scheduler
celery_app.conf.beat_schedule = {}

# Load beat schedule from scheduler module
from app.worker.schedulers import get_beat_schedule

celery_app.conf.beat_schedule.update(get_beat_schedule())


@worker_ready.connect
def at_worker_ready(sender, **kwargs):
    """Log when worker is ready."""
    logger.info("Celery worker is ready.")


if __name__ == "__main__":
    celery_app.start()
