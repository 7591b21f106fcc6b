"""Proof backends and the startup-time selector."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .mock import MockAttestor
from .reclaim import ReclaimAttestor
from .signing import SignedProofBackend, encode_evidence, sign

if TYPE_CHECKING:
    from milesbridge.config import AttestationConfig
    from milesbridge.domain.ports import ProofBackend

__all__ = [
    "MockAttestor",
    "ReclaimAttestor",
    "SignedProofBackend",
    "build_attestor",
    "encode_evidence",
    "sign",
]

log = logging.getLogger(__name__)


def build_attestor(config: AttestationConfig) -> ProofBackend:
    """Construct the proof backend named by configuration, once, at startup."""

    if config.backend == "reclaim":
        if config.reclaim is None:
            log.warning("PROOF_BACKEND=reclaim without credentials; intake will fail")
        return ReclaimAttestor(config=config.reclaim, callback_base_url=config.callback_base_url)
    return MockAttestor(callback_base_url=config.callback_base_url, signing_key=config.mock_key)
