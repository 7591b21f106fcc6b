"""Request bodies and response views for the HTTP surface."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field

from milesbridge.domain.model import (
    DeadLetterKind,
    ItemType,
    Order,
    OrderStatus,
    ProofType,
)
from milesbridge.domain.transfer import Resolution

NonEmptyStr = Annotated[str, Field(min_length=1)]

# requests ------------------------------------------------------------------------


class SellRequest(BaseModel):
    provider: NonEmptyStr
    username: NonEmptyStr
    password: NonEmptyStr


class ListOrderRequest(BaseModel):
    price_per_mile: float
    min_miles: float


class BuyRequest(BaseModel):
    buyer_address: NonEmptyStr
    miles_amount: float
    departure: NonEmptyStr
    destination: NonEmptyStr


class ConfirmEscrowRequest(BaseModel):
    buyer_address: NonEmptyStr
    escrow_tx: NonEmptyStr
    departure: NonEmptyStr
    destination: NonEmptyStr


class TransferCallbackRequest(BaseModel):
    """Completion report posted by the execution agent."""

    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(alias="orderId", min_length=1)
    confirmation_code: str = Field(alias="confirmationCode", min_length=1)
    ticket_details: Any = Field(alias="ticketDetails")
    proof: Any = None


class DisputeRequest(BaseModel):
    reason: str | None = None


class ResolveRequest(BaseModel):
    action: Resolution


# views ---------------------------------------------------------------------------


class OrderView(BaseModel):
    """Everything about an order except the credential ciphertext."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    item_type: ItemType
    provider_id: str
    username: str
    amount: float
    price: float | None = None
    price_per_mile: float | None = None
    min_miles: float | None = None
    buyer_address: str | None = None
    buyer_departure: str | None = None
    buyer_destination: str | None = None
    escrow_tx: str | None = None
    confirmation_code: str | None = None
    ticket_details: Any = None
    status: OrderStatus
    proof_id: str | None = None
    error_msg: str | None = None
    created_at: datetime
    updated_at: datetime


class ListingView(BaseModel):
    id: str
    provider_id: str
    miles_available: float
    price_per_mile: float | None
    min_miles: float | None
    proof_id: str | None
    created_at: datetime

    @classmethod
    def from_order(cls, order: Order) -> ListingView:
        return cls(
            id=order.id,
            provider_id=order.provider_id,
            miles_available=order.amount,
            price_per_mile=order.price_per_mile,
            min_miles=order.min_miles,
            proof_id=order.proof_id,
            created_at=order.created_at,
        )


class AttestationsView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    authenticity: bool
    session_integrity: bool
    domain_ownership: bool
    predicate_satisfied: bool


class ProofView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    provider_domain: str
    proof_type: ProofType
    attestations: AttestationsView
    predicate_expr: str
    raw_proof: str
    signature: str
    created_at: datetime


class ProviderView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    login_url: str
    dashboard_url: str
    item_type: ItemType
    selectors: dict[str, str] | None = None


class DeadLetterView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    kind: DeadLetterKind
    reference: str
    order_id: str | None
    reason: str
    payload: dict[str, Any]
    attempts: int
    created_at: datetime
    resolved_at: datetime | None
