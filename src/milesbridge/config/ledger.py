"""On-chain escrow configuration values."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from .env import env_float, optional_env_var

DEFAULT_RPC_URL: Final[str] = "https://sepolia.base.org"
DEFAULT_POLL_INTERVAL_SECONDS: Final[float] = 10.0
DEFAULT_CALL_TIMEOUT_SECONDS: Final[float] = 20.0
DEFAULT_MAX_POLL_BACKOFF_SECONDS: Final[float] = 300.0
# RPC round trips around the receipt wait when sending a settlement transaction
SETTLEMENT_MARGIN_SECONDS: Final[float] = 10.0
USDC_DECIMALS: Final[int] = 6


@dataclass(frozen=True, slots=True)
class LedgerConfig:
    rpc_url: str = DEFAULT_RPC_URL
    escrow_contract: str | None = None
    admin_private_key: str | None = None
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    call_timeout_seconds: float = DEFAULT_CALL_TIMEOUT_SECONDS
    max_poll_backoff_seconds: float = DEFAULT_MAX_POLL_BACKOFF_SECONDS
    token_decimals: int = USDC_DECIMALS

    @property
    def enabled(self) -> bool:
        return self.escrow_contract is not None

    @property
    def can_sign(self) -> bool:
        return self.enabled and self.admin_private_key is not None

    @property
    def settlement_timeout_seconds(self) -> float:
        """Outer bound for release/refund; exceeds the adapter's receipt wait."""

        return self.call_timeout_seconds * 2 + SETTLEMENT_MARGIN_SECONDS


def get_ledger_config() -> LedgerConfig:
    return LedgerConfig(
        rpc_url=optional_env_var("RPC_URL") or DEFAULT_RPC_URL,
        escrow_contract=optional_env_var("ESCROW_CONTRACT"),
        admin_private_key=optional_env_var("ADMIN_PRIVATE_KEY"),
        poll_interval_seconds=env_float(
            "LEDGER_POLL_INTERVAL_SECONDS", DEFAULT_POLL_INTERVAL_SECONDS
        ),
        call_timeout_seconds=env_float("LEDGER_CALL_TIMEOUT_SECONDS", DEFAULT_CALL_TIMEOUT_SECONDS),
    )
