# Admin routers (tree mutations and maintenance)
from .routes.admin import admin_routers

# Public routers (read-only)
from .routes.public import public_routers

__all__ = ["admin_routers", "public_routers"]
