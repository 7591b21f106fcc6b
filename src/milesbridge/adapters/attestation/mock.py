"""Deterministic local proof backend for development and tests."""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from milesbridge.adapters.attestation.signing import SignedProofBackend
from milesbridge.config.attestation import MOCK_ATTESTOR_KEY
from milesbridge.domain.model import ProofType
from milesbridge.domain.ports import VerificationRequest

log = logging.getLogger(__name__)


class MockAttestor(SignedProofBackend):
    """Fabricates structurally valid proofs synchronously.

    The verification URL is the proof callback itself, so a developer can post a
    payload such as ``{"balance": 8030}`` to it by hand.
    """

    proof_type = ProofType.MOCK

    def __init__(self, *, callback_base_url: str, signing_key: str = MOCK_ATTESTOR_KEY) -> None:
        super().__init__(signing_key)
        self._callback_base_url = callback_base_url.rstrip("/")

    async def create_verification_request(
        self, order_id: str, provider_id: str
    ) -> VerificationRequest:
        log.info("Mock verification request for order %s (%s)", order_id, provider_id)
        url = f"{self._callback_base_url}/callback/proof?{urlencode({'orderId': order_id})}"
        return VerificationRequest(order_id=order_id, verification_url=url, session_id=order_id)
