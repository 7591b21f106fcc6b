"""Sealed-box encryption of seller credentials for the execution agent."""

from __future__ import annotations

import json
import logging

from nacl.encoding import Base64Encoder
from nacl.exceptions import CryptoError
from nacl.public import PublicKey, SealedBox

from milesbridge.domain.errors import BackendNotConfiguredError

log = logging.getLogger(__name__)


class SealedBoxVault:
    """Encrypts to the agent's X25519 public key; only its private key can open it.

    Holds no private key and never decrypts.
    """

    def __init__(self, recipient_public_key: str) -> None:
        try:
            public_key = PublicKey(recipient_public_key.encode("ascii"), encoder=Base64Encoder)
        except (CryptoError, ValueError, TypeError) as exc:
            raise BackendNotConfiguredError(
                "EXECUTION_AGENT_PUBLIC_KEY is not a base64 X25519 public key"
            ) from exc
        self._box = SealedBox(public_key)

    def encrypt(self, credentials: dict[str, str]) -> str:
        plaintext = json.dumps(credentials, separators=(",", ":"), sort_keys=True).encode("utf-8")
        return self._box.encrypt(plaintext, encoder=Base64Encoder).decode("ascii")


def build_vault(public_key: str | None) -> SealedBoxVault | None:
    if public_key is None:
        log.warning("EXECUTION_AGENT_PUBLIC_KEY not set; seller intake is disabled")
        return None
    return SealedBoxVault(public_key)
