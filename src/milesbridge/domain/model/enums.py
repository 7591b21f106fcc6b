"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class ItemType(StrEnum):
    AIRMILES = "AIRMILES"
    GIFT_CARD = "GIFT_CARD"
    API_KEY = "API_KEY"


class OrderStatus(StrEnum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    FAILED = "FAILED"
    LISTED = "LISTED"
    ESCROWED = "ESCROWED"
    TRANSFERRING = "TRANSFERRING"
    TRANSFERRED = "TRANSFERRED"
    RELEASE_PENDING = "RELEASE_PENDING"
    COMPLETED = "COMPLETED"
    DISPUTED = "DISPUTED"
    REFUNDED = "REFUNDED"


class ProofType(StrEnum):
    """Discriminator for the backend that issued a proof."""

    RECLAIM = "reclaim"
    MOCK = "mock"


class PredicateOp(StrEnum):
    GTE = ">="
    EQ = "=="
    GT = ">"


class DeadLetterKind(StrEnum):
    UNMATCHED_DEPOSIT = "unmatched_deposit"
    AMBIGUOUS_DEPOSIT = "ambiguous_deposit"
    UNVERIFIED_BALANCE = "unverified_balance"
    DISPATCH_FAILED = "dispatch_failed"
    RELEASE_FAILED = "release_failed"
    REFUND_FAILED = "refund_failed"
