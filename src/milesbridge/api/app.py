"""FastAPI application factory."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from milesbridge import __version__
from milesbridge.api.errors import register_error_handlers
from milesbridge.api.routes import ROUTERS

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from milesbridge.app import Services

log = logging.getLogger(__name__)


def create_app(
    services: Services, *, poll_in_process: bool = True, admin_token: str | None = None
) -> FastAPI:
    """Build the API around an already wired :class:`Services` container.

    With ``poll_in_process`` and a configured ledger, the escrow reconciler runs as
    a background task for the lifetime of the application. The operator endpoints
    under ``/admin`` answer only to requests carrying ``admin_token``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        stop = asyncio.Event()
        poller: asyncio.Task[None] | None = None
        if poll_in_process and services.reconciler is not None:
            poller = asyncio.create_task(services.reconciler.run(stop), name="escrow-poller")
        else:
            log.info("Escrow poller not running in this process")
        try:
            yield
        finally:
            stop.set()
            if poller is not None:
                await poller
            log.info("API shut down")

    app = FastAPI(title="milesbridge", version=__version__, lifespan=lifespan)
    app.state.services = services
    app.state.admin_token = admin_token
    register_error_handlers(app)
    for router in ROUTERS:
        app.include_router(router)
    return app
