# app/worker/tasks/maintenance.py
"""
Celery tasks for category tree maintenance.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from celery import shared_task

from app.core.config import settings
from app.core.dependencies import category_service_scope

logger = logging.getLogger(__name__)


@shared_task(name="maintenance:purge_deleted_categories")
def purge_deleted_categories(retention_days: Optional[int] = None):
    """
    Physically remove categories soft-deleted more than retention_days ago
    and renumber the live tree so the gaps they left are reclaimed.
    """
    if retention_days is None:
        retention_days = settings.PURGE_RETENTION_DAYS
    cutoff_date = datetime.now(timezone.utc) - timedelta(days=retention_days)

    try:
        logger.info(f"Starting purge of categories deleted before {cutoff_date.isoformat()}")
        with category_service_scope() as service:
            result = service.purge_deleted(cutoff_date)

        logger.info(f"Purged {result.purged} categories, {result.remaining} remain")
        return {"status": "success", "purged": result.purged, "remaining": result.remaining}
    except Exception as e:
        logger.exception(f"Error purging deleted categories: {str(e)}")
        return {"status": "error", "message": str(e)}


@shared_task(name="maintenance:verify_category_tree")
def verify_category_tree(auto_rebuild: Optional[bool] = None):
    """
    Check the stored tree against the nested-set invariants; with auto_rebuild
    a corrupt tree is renumbered from its parent links.
    """
    if auto_rebuild is None:
        auto_rebuild = settings.AUTO_REBUILD_ON_CORRUPTION

    try:
        with category_service_scope() as service:
            violations = service.verify_tree()
            if not violations:
                logger.info("Category tree verified, no violations")
                return {"status": "healthy", "violations": []}

            for violation in violations[:20]:
                logger.warning(f"Tree violation: {violation}")

            if not auto_rebuild:
                return {"status": "corrupt", "violations": violations}

            logger.warning(f"Rebuilding category tree after {len(violations)} violations")
            result = service.rebuild_from_storage()
            remaining = service.verify_tree()

        return {
            "status": "rebuilt" if not remaining else "corrupt",
            "violations": violations,
            "remaining_violations": remaining,
            "rebuild": result.model_dump(),
        }
    except Exception as e:
        logger.exception(f"Error verifying category tree: {str(e)}")
        return {"status": "error", "message": str(e)}
