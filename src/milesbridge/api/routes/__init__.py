"""HTTP routers grouped by caller."""

from __future__ import annotations

from .admin import router as admin_router
from .buyer import router as buyer_router
from .callbacks import router as callbacks_router
from .catalog import router as catalog_router
from .listings import router as listings_router
from .seller import router as seller_router

ROUTERS = (
    catalog_router,
    seller_router,
    callbacks_router,
    listings_router,
    buyer_router,
    admin_router,
)

__all__ = ["ROUTERS"]
