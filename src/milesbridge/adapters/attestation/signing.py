"""Evidence encoding and HMAC signing shared by the proof backends."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
from typing import TYPE_CHECKING

from milesbridge.domain.evidence import evaluate_predicate
from milesbridge.domain.model import Attestations, PredicateOp, Proof, ProofType, new_id, utcnow

if TYPE_CHECKING:
    from collections.abc import Mapping

log = logging.getLogger(__name__)


def encode_evidence(evidence: Mapping[str, object]) -> str:
    """Base64 of the compact JSON evidence document."""

    payload = json.dumps(evidence, separators=(",", ":"), sort_keys=True, default=str)
    return base64.b64encode(payload.encode("utf-8")).decode("ascii")


def sign(raw_proof: str, key: str) -> str:
    return hmac.new(key.encode("utf-8"), raw_proof.encode("utf-8"), hashlib.sha256).hexdigest()


class SignedProofBackend:
    """Issues and checks proofs signed with HMAC-SHA256 over ``raw_proof``.

    Subclasses decide the key, the proof type and how verification requests are
    created.
    """

    proof_type: ProofType

    def __init__(self, signing_key: str) -> None:
        self._signing_key = signing_key

    def _evidence(
        self,
        *,
        domain: str,
        response_data: object,
        attestations: Attestations,
        predicate_expr: str,
        actual_value: object,
    ) -> dict[str, object]:
        return {
            "type": f"{self.proof_type}_zktls_proof",
            "domain": domain,
            "attestations": attestations.to_dict(),
            "predicate": predicate_expr,
            "actualValue": actual_value,
            "responseData": response_data,
            "timestamp": utcnow().isoformat(),
            "nonce": new_id(),
        }

    def generate_proof(
        self,
        *,
        domain: str,
        response_data: object,
        predicate_field: str,
        predicate_value: float,
        predicate_op: PredicateOp,
    ) -> Proof:
        satisfied = evaluate_predicate(
            response_data, predicate_field, predicate_value, predicate_op
        )
        attestations = Attestations(
            authenticity=True,
            session_integrity=True,
            domain_ownership=True,
            predicate_satisfied=satisfied,
        )
        predicate_expr = f"{predicate_field} {PredicateOp(predicate_op)} {predicate_value:g}"
        actual_value = (
            response_data.get(predicate_field) if isinstance(response_data, dict) else None
        )
        raw_proof = encode_evidence(
            self._evidence(
                domain=domain,
                response_data=response_data,
                attestations=attestations,
                predicate_expr=predicate_expr,
                actual_value=actual_value,
            )
        )
        return Proof(
            provider_domain=domain,
            proof_type=self.proof_type,
            attestations=attestations,
            predicate_expr=predicate_expr,
            raw_proof=raw_proof,
            signature=sign(raw_proof, self._signing_key),
        )

    def verify_proof(self, proof: Proof) -> bool:
        raw_proof = getattr(proof, "raw_proof", None)
        signature = getattr(proof, "signature", None)
        if not isinstance(raw_proof, str) or not isinstance(signature, str):
            return False
        try:
            base64.b64decode(raw_proof, validate=True)
        except ValueError:
            log.debug("Proof %s has a malformed raw_proof", getattr(proof, "id", "?"))
            return False
        return hmac.compare_digest(sign(raw_proof, self._signing_key), signature)
