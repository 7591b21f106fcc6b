"""Buyer ticket view and settlement."""

from __future__ import annotations

from fastapi import APIRouter

from milesbridge.api.dependencies import ServicesDep
from milesbridge.api.schemas import DisputeRequest
from milesbridge.domain.model import OrderStatus

router = APIRouter(prefix="/buyer/orders", tags=["buyer"])


@router.get("/{order_id}/ticket")
def ticket(order_id: str, services: ServicesDep) -> dict[str, object]:
    order = services.marketplace.ticket(order_id)
    return {
        "orderId": order.id,
        "status": order.status,
        "confirmation_code": order.confirmation_code,
        "departure": order.buyer_departure,
        "destination": order.buyer_destination,
        "provider": order.provider_id,
        "ticket_details": order.ticket_details,
        "escrow_tx": order.escrow_tx,
    }


@router.post("/{order_id}/approve")
async def approve(order_id: str, services: ServicesDep) -> dict[str, object]:
    order = await services.orchestrator.approve(order_id)
    released = order.status is OrderStatus.COMPLETED
    return {
        "orderId": order.id,
        "status": order.status,
        "message": (
            "Transfer approved. Escrow funds released to seller."
            if released
            else f"Transfer approved; release is pending: {order.error_msg}"
        ),
    }


@router.post("/{order_id}/dispute")
def dispute(
    order_id: str, services: ServicesDep, body: DisputeRequest | None = None
) -> dict[str, object]:
    reason = body.reason if body is not None else None
    order = services.orchestrator.dispute(order_id, reason or "No reason given")
    return {
        "orderId": order.id,
        "status": order.status,
        "reason": reason,
        "message": "Dispute filed. An operator will review the proof and resolve it.",
    }
