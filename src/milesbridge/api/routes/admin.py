"""Operator endpoints: dispute resolution, release retries and the review queues."""

from __future__ import annotations

from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from milesbridge.api.dependencies import ServicesDep, require_admin
from milesbridge.api.schemas import DeadLetterView, OrderView, ResolveRequest

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.post("/orders/{order_id}/resolve")
async def resolve(order_id: str, body: ResolveRequest, services: ServicesDep) -> dict[str, object]:
    order = await services.orchestrator.resolve_dispute(order_id, body.action)
    return {"orderId": order.id, "status": order.status, "action": body.action}


@router.post("/orders/{order_id}/retry-release")
async def retry_release(order_id: str, services: ServicesDep) -> dict[str, object]:
    order = await services.orchestrator.retry_release(order_id)
    return {"orderId": order.id, "status": order.status}


@router.get("/dead-letters")
def dead_letters(
    services: ServicesDep, include_resolved: Annotated[bool, Query()] = False
) -> dict[str, object]:
    letters = services.marketplace.dead_letters(include_resolved=include_resolved)
    return {
        "dead_letters": [
            DeadLetterView.model_validate(letter).model_dump(mode="json") for letter in letters
        ],
        "count": len(letters),
    }


@router.get("/orders/stuck")
def stuck_orders(
    services: ServicesDep,
    older_than_minutes: Annotated[float | None, Query(ge=0)] = None,
) -> dict[str, object]:
    minutes = (
        older_than_minutes
        if older_than_minutes is not None
        else services.execution_config.stuck_after_minutes
    )
    orders = services.orchestrator.stuck_orders(timedelta(minutes=minutes))
    return {
        "orders": [OrderView.model_validate(order).model_dump(mode="json") for order in orders],
        "count": len(orders),
        "older_than_minutes": minutes,
    }
