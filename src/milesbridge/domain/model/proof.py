"""Attestation records produced by proof backends."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING

from .entity import new_id, utcnow
from .enums import ProofType

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime


@dataclass(frozen=True, slots=True)
class Attestations:
    authenticity: bool = False
    session_integrity: bool = False
    domain_ownership: bool = False
    predicate_satisfied: bool = False

    def to_dict(self) -> dict[str, bool]:
        return asdict(self)

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> Attestations:
        return cls(
            authenticity=bool(data.get("authenticity", False)),
            session_integrity=bool(data.get("session_integrity", False)),
            domain_ownership=bool(data.get("domain_ownership", False)),
            predicate_satisfied=bool(data.get("predicate_satisfied", False)),
        )


@dataclass(eq=False, kw_only=True)
class Proof:
    """Signed attestation. Never mutated once stored."""

    id: str = field(default_factory=new_id)
    provider_domain: str
    proof_type: ProofType
    attestations: Attestations
    predicate_expr: str
    raw_proof: str
    signature: str
    created_at: datetime = field(default_factory=utcnow)
