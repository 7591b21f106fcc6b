"""Port for the isolated execution agent that performs transfers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable


@dataclass(frozen=True, slots=True)
class TransferRequest:
    order_id: str
    encrypted_creds: str | None
    username: str
    provider_id: str
    departure: str | None
    destination: str | None
    miles_amount: float
    callback_url: str

    def to_payload(self) -> dict[str, object]:
        return {
            "orderId": self.order_id,
            "encryptedCreds": self.encrypted_creds,
            "username": self.username,
            "providerId": self.provider_id,
            "departure": self.departure,
            "destination": self.destination,
            "milesAmount": self.miles_amount,
            "callbackUrl": self.callback_url,
        }


@runtime_checkable
class ExecutionAgent(Protocol):
    async def execute(self, request: TransferRequest) -> None:
        """Hand the request to the agent; raise ``ExternalCallError`` on failure."""
        ...


@runtime_checkable
class CredentialVault(Protocol):
    """Seals seller credentials for the execution agent."""

    def encrypt(self, credentials: dict[str, str]) -> str: ...
