"""Seller intake, order reads and listing."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query

from milesbridge.api.dependencies import ServicesDep
from milesbridge.api.schemas import ListOrderRequest, OrderView, ProofView, SellRequest
from milesbridge.domain.model import OrderStatus, utcnow

router = APIRouter(tags=["seller"])


@router.post("/sell/{asset}")
async def sell(asset: str, body: SellRequest, services: ServicesDep) -> dict[str, object]:
    result = await services.marketplace.sell(
        asset=asset, provider_id=body.provider, username=body.username, password=body.password
    )
    return {
        "orderId": result.order.id,
        "provider": result.order.provider_id,
        "status": result.order.status,
        "verificationUrl": result.verification.verification_url,
        "sessionId": result.verification.session_id,
        "message": (
            "Open the verificationUrl on your device to verify your account. "
            "The proof is delivered automatically once verification completes."
        ),
        "timestamp": utcnow().isoformat(),
    }


@router.get("/orders")
def list_orders(
    services: ServicesDep,
    status: OrderStatus | None = None,
    provider_id: Annotated[str | None, Query()] = None,
) -> dict[str, object]:
    orders = services.marketplace.orders(status=status, provider_id=provider_id)
    return {
        "orders": [OrderView.model_validate(order).model_dump(mode="json") for order in orders],
        "count": len(orders),
    }


@router.get("/orders/{order_id}")
def get_order(order_id: str, services: ServicesDep) -> dict[str, object]:
    order, proof = services.marketplace.get_order(order_id)
    return {
        "order": OrderView.model_validate(order).model_dump(mode="json"),
        "proof": ProofView.model_validate(proof).model_dump(mode="json") if proof else None,
    }


@router.post("/orders/{order_id}/list")
def list_order(order_id: str, body: ListOrderRequest, services: ServicesDep) -> dict[str, object]:
    order = services.marketplace.list_order(
        order_id, price_per_mile=body.price_per_mile, min_miles=body.min_miles
    )
    return {
        "orderId": order.id,
        "status": order.status,
        "miles_available": order.amount,
        "price_per_mile": order.price_per_mile,
        "min_miles": order.min_miles,
        "price": order.price,
        "message": "Order is now listed for sale",
    }
