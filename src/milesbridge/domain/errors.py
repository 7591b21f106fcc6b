"""Error taxonomy shared by the domain services and the HTTP surface."""

from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    DUPLICATE_ORDER = "DUPLICATE_ORDER"
    BELOW_MINIMUM = "BELOW_MINIMUM"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    CONFIG_MISSING = "CONFIG_MISSING"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class MarketplaceError(Exception):
    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, *, code: ErrorCode | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class InvalidInputError(MarketplaceError):
    code = ErrorCode.INVALID_INPUT


class NotFoundError(MarketplaceError):
    code = ErrorCode.NOT_FOUND


class ConflictError(MarketplaceError):
    """A status precondition was not met."""

    code = ErrorCode.CONFLICT


class StaleTransitionError(ConflictError):
    """The persisted status moved on before the compare-and-swap committed.

    Callers treat this as "already processed": it is never retried blindly.
    """

    reason = "STALE_TRANSITION"


class InvalidTransitionError(ConflictError):
    """The requested edge is not part of the order status graph."""

    reason = "INVALID_STATUS"


class DuplicateOrderError(MarketplaceError):
    code = ErrorCode.DUPLICATE_ORDER

    def __init__(self, message: str, *, existing_order_id: str) -> None:
        super().__init__(message)
        self.existing_order_id = existing_order_id


class BelowMinimumError(MarketplaceError):
    code = ErrorCode.BELOW_MINIMUM


class InsufficientBalanceError(MarketplaceError):
    code = ErrorCode.INSUFFICIENT_BALANCE


class BackendNotConfiguredError(MarketplaceError):
    code = ErrorCode.CONFIG_MISSING


class UnauthorizedError(MarketplaceError):
    code = ErrorCode.UNAUTHORIZED


class ForbiddenError(MarketplaceError):
    code = ErrorCode.FORBIDDEN


class ExternalCallError(RuntimeError):
    """An outbound call (ledger, execution agent, proof service) failed.

    ``retryable`` separates transient failures (timeouts, connection errors,
    throttling, 5xx) from terminal ones (rejected request, reverted transaction).
    """

    def __init__(self, message: str, *, retryable: bool) -> None:
        super().__init__(message)
        self.retryable = retryable
