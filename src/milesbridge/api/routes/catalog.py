"""Health and provider registry."""

from __future__ import annotations

from fastapi import APIRouter

from milesbridge import __version__
from milesbridge.api.dependencies import ServicesDep
from milesbridge.api.schemas import ProviderView
from milesbridge.domain.model import utcnow

router = APIRouter(tags=["catalog"])


@router.get("/health")
def health(services: ServicesDep) -> dict[str, object]:
    now = utcnow()
    return {
        "status": "ok",
        "uptime": int((now - services.started_at).total_seconds()),
        "timestamp": now.isoformat(),
        "version": __version__,
    }


@router.get("/providers")
def providers(services: ServicesDep) -> dict[str, object]:
    views = [ProviderView.model_validate(p) for p in services.marketplace.providers()]
    return {"providers": [view.model_dump(mode="json") for view in views], "count": len(views)}
