"""Health check endpoints for monitoring service status"""
from datetime import datetime, timezone

from fastapi import APIRouter, Request, status
from sqlalchemy import text

health_router = APIRouter(tags=["health"])


@health_router.get(
    "/health",
    status_code=status.HTTP_200_OK,
    summary="Basic health check",
    description="Check if the API is responsive",
)
async def health_check():
    """Basic health check endpoint"""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "category-tree-api",
    }


@health_router.get(
    "/health/detailed",
    status_code=status.HTTP_200_OK,
    summary="Detailed health check",
    description="Check the database and the descendant-id cache",
)
def detailed_health_check(request: Request):
    """Detailed health check including all dependencies"""
    health_status = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "category-tree-api",
        "dependencies": {},
    }

    # Check database
    try:
        db = request.app.state.session_factory()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
        health_status["dependencies"]["database"] = {
            "status": "healthy",
            "message": "Database connection successful",
        }
    except Exception as e:
        health_status["status"] = "unhealthy"
        health_status["dependencies"]["database"] = {
            "status": "unhealthy",
            "message": f"Database connection failed: {str(e)}",
        }

    # Check cache; a missing cache only degrades lookups
    cache = request.app.state.cache
    if cache is None:
        health_status["dependencies"]["cache"] = {
            "status": "disabled",
            "message": "Category cache is disabled",
        }
    elif cache.redis_client is None:
        health_status["dependencies"]["cache"] = {
            "status": "degraded",
            "message": "Redis unavailable, serving without cache",
        }
    else:
        try:
            cache.redis_client.ping()
            health_status["dependencies"]["cache"] = {
                "status": "healthy",
                "message": "Redis connection successful",
            }
        except Exception as e:
            health_status["dependencies"]["cache"] = {
                "status": "degraded",
                "message": f"Redis connection failed: {str(e)}",
            }

    return health_status
