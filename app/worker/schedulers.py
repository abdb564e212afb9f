# app/worker/schedulers.py
"""
Scheduled task definitions for Celery Beat.
"""
import logging
from datetime import timedelta

from app.core.config import settings

logger = logging.getLogger(__name__)


def get_beat_schedule():
    """
    Generate Celery Beat schedule from configuration.

    An interval of 0 or less disables the corresponding task.

    Returns:
        Dict of scheduled tasks
    """
    schedule = {}

    if settings.PURGE_INTERVAL > 0:
        schedule["purge-deleted-categories"] = {
            "task": "maintenance:purge_deleted_categories",
            "schedule": timedelta(seconds=settings.PURGE_INTERVAL),
            "options": {"expires": settings.PURGE_INTERVAL},
        }
    else:
        logger.info("Category purge schedule disabled")

    if settings.VERIFY_INTERVAL > 0:
        schedule["verify-category-tree"] = {
            "task": "maintenance:verify_category_tree",
            "schedule": timedelta(seconds=settings.VERIFY_INTERVAL),
            "options": {"expires": settings.VERIFY_INTERVAL},
        }
    else:
        logger.info("Category tree verification schedule disabled")

    return schedule
