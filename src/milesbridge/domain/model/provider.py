"""Loyalty programme providers a seller can verify against."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from urllib.parse import urlsplit

from .entity import utcnow
from .enums import ItemType

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(eq=False, kw_only=True)
class Provider:
    id: str
    name: str
    login_url: str
    dashboard_url: str
    item_type: ItemType = ItemType.AIRMILES
    selectors: dict[str, str] | None = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def domain(self) -> str:
        return urlsplit(self.dashboard_url).hostname or self.id
