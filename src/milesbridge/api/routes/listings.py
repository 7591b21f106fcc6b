"""Buyer-facing listings, quotes and manual escrow confirmation."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Query

from milesbridge.api.dependencies import ServicesDep
from milesbridge.api.schemas import BuyRequest, ConfirmEscrowRequest, ListingView

router = APIRouter(prefix="/listings", tags=["listings"])


@router.get("")
def listings(
    services: ServicesDep,
    provider: Annotated[str | None, Query()] = None,
    max_price: Annotated[float | None, Query()] = None,
) -> dict[str, object]:
    orders = services.marketplace.listings(provider_id=provider, max_price=max_price)
    return {
        "listings": [ListingView.from_order(order).model_dump(mode="json") for order in orders],
        "count": len(orders),
    }


@router.post("/{order_id}/buy")
def buy(order_id: str, body: BuyRequest, services: ServicesDep) -> dict[str, object]:
    quote = services.marketplace.quote(order_id, body.miles_amount)
    return {
        "orderId": quote.order.id,
        "miles_amount": quote.miles_amount,
        "price_per_mile": quote.order.price_per_mile,
        "total_cost_usd": f"{quote.total_cost:.2f}",
        "buyer_address": body.buyer_address,
        "departure": body.departure,
        "destination": body.destination,
        "escrow_contract": quote.escrow_contract,
        "instructions": quote.instructions,
    }


@router.post("/{order_id}/confirm-escrow")
def confirm_escrow(
    order_id: str,
    body: ConfirmEscrowRequest,
    services: ServicesDep,
    background: BackgroundTasks,
) -> dict[str, object]:
    order = services.marketplace.confirm_escrow(
        order_id,
        buyer_address=body.buyer_address,
        escrow_tx=body.escrow_tx,
        departure=body.departure,
        destination=body.destination,
    )
    background.add_task(services.orchestrator.trigger_transfer, order.id)
    return {
        "orderId": order.id,
        "status": order.status,
        "buyer_address": order.buyer_address,
        "departure": order.buyer_departure,
        "destination": order.buyer_destination,
        "escrow_tx": order.escrow_tx,
        "message": "Escrow confirmed. The transfer is being dispatched.",
    }
