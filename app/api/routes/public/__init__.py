from .health import health_router
from .categories import categories_router

public_routers = [
    ("health", health_router),
    ("categories", categories_router),
]

__all__ = ["public_routers"]
