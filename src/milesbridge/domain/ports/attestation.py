"""Port for proof/attestation backends."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from milesbridge.domain.model import PredicateOp, Proof, ProofType


@dataclass(frozen=True, slots=True)
class VerificationRequest:
    order_id: str
    verification_url: str
    session_id: str


@runtime_checkable
class ProofBackend(Protocol):
    """Capability shared by the interactive and the local proof backends."""

    @property
    def proof_type(self) -> ProofType: ...

    async def create_verification_request(
        self, order_id: str, provider_id: str
    ) -> VerificationRequest: ...

    def generate_proof(
        self,
        *,
        domain: str,
        response_data: object,
        predicate_field: str,
        predicate_value: float,
        predicate_op: PredicateOp,
    ) -> Proof: ...

    def verify_proof(self, proof: Proof) -> bool: ...
