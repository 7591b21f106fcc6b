"""Operator-facing records of work the engine could not finish on its own."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .entity import new_id, utcnow

if TYPE_CHECKING:
    from datetime import datetime

    from .enums import DeadLetterKind


@dataclass(eq=False, kw_only=True)
class DeadLetter:
    id: str = field(default_factory=new_id)
    kind: DeadLetterKind
    # natural key of the failed item (tx hash, order id); unique per kind
    reference: str
    order_id: str | None = None
    reason: str
    payload: dict[str, object] = field(default_factory=dict)
    attempts: int = 1
    created_at: datetime = field(default_factory=utcnow)
    resolved_at: datetime | None = None
