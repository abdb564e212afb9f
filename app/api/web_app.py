# Standard library
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

# Third party
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy import text

# Local imports
from app.core.config import settings
from app.core.dependencies import build_cache_service, wire_event_bus
from app.core.exceptions import (
    CategoryTreeError,
    ConflictError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from app.core.logging import get_logger
from app.db.base import build_session_factory, create_db_engine
from app.db.tree_lock import TreeLock
import app.api as api


logger = get_logger(__name__)

ERROR_STATUS_CODES = {
    ValidationError: 400,
    NotFoundError: 404,
    ConflictError: 409,
    StorageError: 503,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for FastAPI application startup and shutdown events"""
    # Startup
    logger.info("🚀 Category Tree API starting up...")

    # Test database connection
    try:
        session = app.state.session_factory()
        try:
            session.execute(text("SELECT 1")).fetchone()
        finally:
            session.close()
        logger.info("✅ Database connection successful")
    except Exception as e:
        logger.error(f"❌ Database connection failed: {e}")
        raise

    yield  # This is where FastAPI serves the application

    # Shutdown
    app.state.engine.dispose()
    logger.info("🛑 Category Tree API shutting down...")


def create_app(database_url: Optional[str] = None) -> FastAPI:
    """Create and configure FastAPI application"""

    app = FastAPI(
        title="Category Tree",
        description="Hierarchical product categories stored as a nested set.",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
        default_response_class=JSONResponse,
    )

    engine = create_db_engine(database_url)
    cache = build_cache_service()
    app.state.engine = engine
    app.state.session_factory = build_session_factory(engine)
    app.state.cache = cache
    app.state.event_bus = wire_event_bus(cache)
    app.state.tree_lock = TreeLock()

    # Mount Admin APIs (tree mutations and maintenance)
    for name, router in api.admin_routers:
        app.include_router(router, prefix="/api/v1/admin", tags=[f"admin-{name}"])

    # Mount Public APIs
    for name, router in api.public_routers:
        app.include_router(router, prefix="/api/v1", tags=[name])

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure properly for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        request_id = str(uuid.uuid4())
        logger.info(f"[{request_id}] {request.method} {request.url.path}")
        if request.query_params:
            logger.debug(f"[{request_id}] Query Params: {dict(request.query_params)}")

        start_time = time.time()
        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.time() - start_time
            logger.error(
                f"[{request_id}] Request failed after {process_time:.4f}s: {str(e)}",
                exc_info=True,
            )
            raise  # Re-raise the exception so it's handled properly

        process_time = time.time() - start_time
        response.headers["X-Process-Time"] = str(process_time)
        log = logger.warning if response.status_code >= 400 else logger.info
        log(f"[{request_id}] {response.status_code} in {process_time:.4f}s")
        return response

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint for load balancers and monitoring"""
        return {
            "status": "healthy",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    @app.get("/openapi.yaml")
    async def get_openapi_yaml():
        """Serve OpenAPI specification in YAML format"""
        from yaml import dump

        yaml_content = dump(app.openapi(), default_flow_style=False, sort_keys=False)
        return Response(content=yaml_content, media_type="application/x-yaml")

    @app.exception_handler(CategoryTreeError)
    async def category_error_handler(request: Request, exc: CategoryTreeError):
        status_code = ERROR_STATUS_CODES.get(type(exc), 500)
        log = logger.error if status_code >= 500 else logger.warning
        log(f"{type(exc).__name__}: {exc.message}")
        return JSONResponse(
            status_code=status_code,
            content={"detail": exc.message, "error": exc.kind},
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Global exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500, content={"detail": "Internal server error"}
        )

    return app
