"""Execution agent configuration values."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Final

from .env import env_float, optional_env_var
from .http_resilience import ResilienceConfig, RetryPolicy

DEFAULT_EXECUTION_AGENT_URL: Final[str] = "http://localhost:4000"
EXECUTION_AGENT_TIMEOUT_SECONDS: Final[float] = 30.0
DEFAULT_STUCK_AFTER_MINUTES: Final[float] = 60.0


@dataclass(frozen=True)
class ExecutionAgentConfig:
    base_url: str = DEFAULT_EXECUTION_AGENT_URL
    public_key: str | None = None
    stuck_after_minutes: float = DEFAULT_STUCK_AFTER_MINUTES
    resilience: ResilienceConfig = field(
        default_factory=lambda: ResilienceConfig(
            name="execution-agent",
            base_url=DEFAULT_EXECUTION_AGENT_URL,
            timeout_seconds=EXECUTION_AGENT_TIMEOUT_SECONDS,
            retry=RetryPolicy(total=3, backoff_factor=1.0, max_backoff_wait=30.0),
        )
    )


def get_execution_agent_config() -> ExecutionAgentConfig:
    base_url = (optional_env_var("EXECUTION_AGENT_URL") or DEFAULT_EXECUTION_AGENT_URL).rstrip("/")
    return ExecutionAgentConfig(
        base_url=base_url,
        public_key=optional_env_var("EXECUTION_AGENT_PUBLIC_KEY"),
        stuck_after_minutes=env_float("STUCK_ORDER_AFTER_MINUTES", DEFAULT_STUCK_AFTER_MINUTES),
        resilience=ResilienceConfig(
            name="execution-agent",
            base_url=base_url,
            timeout_seconds=EXECUTION_AGENT_TIMEOUT_SECONDS,
            retry=RetryPolicy(total=3, backoff_factor=1.0, max_backoff_wait=30.0),
        ),
    )
