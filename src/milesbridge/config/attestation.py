"""Proof backend configuration values."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final, Literal

from .env import optional_env_var, require_env_vars
from .errors import ConfigurationError
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy

ProofBackendName = Literal["mock", "reclaim"]

DEFAULT_CALLBACK_BASE_URL: Final[str] = "http://localhost:3000"
RECLAIM_API_BASE_URL: Final[str] = "https://api.reclaimprotocol.org"
RECLAIM_SHARE_BASE_URL: Final[str] = "https://share.reclaimprotocol.org/verifier/"
RECLAIM_TIMEOUT_SECONDS: Final[float] = 15.0
MOCK_ATTESTOR_KEY: Final[str] = "mock-attestor-key"


def _default_reclaim_resilience() -> ResilienceConfig:
    return ResilienceConfig(
        name="reclaim",
        base_url=RECLAIM_API_BASE_URL,
        timeout_seconds=RECLAIM_TIMEOUT_SECONDS,
        retry=RetryPolicy(total=3),
        ratelimit=RateLimit(max_calls=5, per_seconds=1.0),
    )


@dataclass(frozen=True)
class ReclaimConfig:
    """Credentials for the Reclaim Protocol attestation service."""

    app_id: str
    app_secret: str
    provider_id: str
    share_base_url: str = RECLAIM_SHARE_BASE_URL
    resilience: ResilienceConfig = field(default_factory=_default_reclaim_resilience)


@dataclass(frozen=True)
class AttestationConfig:
    backend: ProofBackendName
    callback_base_url: str
    reclaim: ReclaimConfig | None = None
    mock_key: str = MOCK_ATTESTOR_KEY


def get_reclaim_config() -> ReclaimConfig:
    values = require_env_vars(("RECLAIM_APP_ID", "RECLAIM_APP_SECRET", "RECLAIM_PROVIDER_ID"))
    return ReclaimConfig(
        app_id=values["RECLAIM_APP_ID"],
        app_secret=values["RECLAIM_APP_SECRET"],
        provider_id=values["RECLAIM_PROVIDER_ID"],
    )


def get_callback_base_url() -> str:
    return (optional_env_var("CALLBACK_BASE_URL") or DEFAULT_CALLBACK_BASE_URL).rstrip("/")


def get_attestation_config() -> AttestationConfig:
    backend = (optional_env_var("PROOF_BACKEND") or "mock").lower()
    if backend not in {"mock", "reclaim"}:
        raise ConfigurationError(f"Unsupported PROOF_BACKEND: {backend}")
    if backend == "reclaim":
        # credentials are checked lazily so a misconfigured server still boots and
        # reports CONFIG_MISSING per request
        try:
            reclaim = get_reclaim_config()
        except ConfigurationError:
            reclaim = None
        return AttestationConfig(
            backend="reclaim",
            callback_base_url=get_callback_base_url(),
            reclaim=reclaim,
        )
    return AttestationConfig(backend="mock", callback_base_url=get_callback_base_url())
