from .categories import categories_admin_router

admin_routers = [
    ("categories", categories_admin_router),
]

__all__ = ["admin_routers"]
