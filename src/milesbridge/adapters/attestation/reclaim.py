"""Reclaim Protocol proof backend.

A verification request opens a Reclaim session for the configured provider and
returns the share link the seller opens on their phone. Reclaim later posts the
proof to ``/callback/proof?orderId=...``; that payload is normalised by the
callback handler and re-signed here with the application secret.
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING
from urllib.parse import quote, urlencode

import httpx
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_utils import keccak
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from milesbridge.adapters.attestation.signing import SignedProofBackend
from milesbridge.adapters.http_resilience import ResilientClient, default_client_factory
from milesbridge.domain.errors import BackendNotConfiguredError, ExternalCallError
from milesbridge.domain.model import ProofType
from milesbridge.domain.ports import VerificationRequest

if TYPE_CHECKING:
    from milesbridge.config import ReclaimConfig, ResilienceConfig

log = logging.getLogger(__name__)

SESSION_INIT_PATH = "/api/sdk/init/session/"
SDK_VERSION = "milesbridge-py-1"


class SessionInitResponse(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    session_id: str = Field(alias="sessionId")


def _canonical(data: dict[str, object]) -> str:
    return json.dumps(data, separators=(",", ":"), sort_keys=True)


class ReclaimAttestor(SignedProofBackend):
    """Interactive backend. Without credentials every request fails CONFIG_MISSING."""

    proof_type = ProofType.RECLAIM

    def __init__(
        self,
        *,
        config: ReclaimConfig | None,
        callback_base_url: str,
        client_factory: Callable[[ResilienceConfig], ResilientClient] = default_client_factory,
    ) -> None:
        # verification still needs a key when credentials are missing
        super().__init__(config.app_secret if config is not None else "local")
        self._config = config
        self._callback_base_url = callback_base_url.rstrip("/")
        self._client_factory = client_factory

    async def create_verification_request(
        self, order_id: str, provider_id: str
    ) -> VerificationRequest:
        config = self._config
        if config is None:
            raise BackendNotConfiguredError(
                "RECLAIM_APP_ID, RECLAIM_APP_SECRET and RECLAIM_PROVIDER_ID must be set"
            )

        timestamp = str(int(time.time() * 1000))
        signature = self._sign_session(config, timestamp)
        session_id = await self._init_session(config, timestamp, signature)

        query = urlencode({"orderId": order_id})
        callback_url = f"{self._callback_base_url}/callback/proof?{query}"
        template = {
            "sessionId": session_id,
            "providerId": config.provider_id,
            "applicationId": config.app_id,
            "signature": signature,
            "timestamp": timestamp,
            "callbackUrl": callback_url,
            "context": _canonical({"contextAddress": "0x0", "contextMessage": order_id}),
            "parameters": {},
            "redirectUrl": "",
            "acceptAiProviders": False,
            "sdkVersion": SDK_VERSION,
        }
        verification_url = f"{config.share_base_url}?template={quote(_canonical(template))}"
        log.info(
            "Reclaim session %s opened for order %s (provider %s)",
            session_id,
            order_id,
            provider_id,
        )
        return VerificationRequest(
            order_id=order_id, verification_url=verification_url, session_id=session_id
        )

    @staticmethod
    def _sign_session(config: ReclaimConfig, timestamp: str) -> str:
        message_hash = keccak(
            text=_canonical({"providerId": config.provider_id, "timestamp": timestamp})
        )
        try:
            signed = Account.sign_message(
                encode_defunct(primitive=message_hash), private_key=config.app_secret
            )
        except (ValueError, TypeError) as exc:
            raise BackendNotConfiguredError("RECLAIM_APP_SECRET is not a valid key") from exc
        return "0x" + signed.signature.hex().removeprefix("0x")

    async def _init_session(self, config: ReclaimConfig, timestamp: str, signature: str) -> str:
        body = {
            "providerId": config.provider_id,
            "appId": config.app_id,
            "timestamp": timestamp,
            "signature": signature,
        }
        try:
            async with self._client_factory(config.resilience) as client:
                response = await client.post(SESSION_INIT_PATH, json=body)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            raise ExternalCallError(
                f"Reclaim session init failed with HTTP {status}",
                retryable=status == 429 or status >= 500,
            ) from exc
        except httpx.HTTPError as exc:
            raise ExternalCallError(f"Reclaim session init failed: {exc}", retryable=True) from exc
        except ValueError as exc:
            msg = "Reclaim returned a non-JSON response"
            raise ExternalCallError(msg, retryable=False) from exc

        try:
            return SessionInitResponse.model_validate(payload).session_id
        except ValidationError as exc:
            msg = "Reclaim response is missing sessionId"
            raise ExternalCallError(msg, retryable=False) from exc
