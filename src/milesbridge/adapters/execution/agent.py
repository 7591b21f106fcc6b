"""HTTP client for the execution agent."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from milesbridge.adapters.http_resilience import ResilientClient, default_client_factory
from milesbridge.config import ExecutionAgentConfig, get_execution_agent_config
from milesbridge.domain.errors import ExternalCallError

if TYPE_CHECKING:
    from milesbridge.config import ResilienceConfig
    from milesbridge.domain.ports import TransferRequest

log = logging.getLogger(__name__)

EXECUTE_PATH = "/execute"


class ExecuteAccepted(BaseModel):
    model_config = ConfigDict(extra="allow")

    status: str


@dataclass(slots=True)
class HttpExecutionAgent:
    """Posts transfer requests to ``{EXECUTION_AGENT_URL}/execute``.

    The agent answers ``202 {"status": "ACCEPTED"}`` and reports the outcome later
    on the request's callback URL. Transient failures are retried by the
    transport; whatever is left is raised as :class:`ExternalCallError`.
    """

    config: ExecutionAgentConfig = field(default_factory=get_execution_agent_config)
    client_factory: Callable[[ResilienceConfig], ResilientClient] = field(
        default=default_client_factory
    )

    async def execute(self, request: TransferRequest) -> None:
        try:
            async with self.client_factory(self.config.resilience) as client:
                response = await client.post(EXECUTE_PATH, json=request.to_payload())
        except httpx.HTTPError as exc:
            raise ExternalCallError(
                f"Execution agent unreachable: {exc}", retryable=True
            ) from exc

        if response.status_code not in {200, 202}:
            status = response.status_code
            raise ExternalCallError(
                f"Execution agent returned HTTP {status}: {response.text[:200]}",
                retryable=status == 429 or status >= 500,
            )
        try:
            accepted = ExecuteAccepted.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise ExternalCallError(
                "Execution agent returned an unreadable response", retryable=False
            ) from exc
        if accepted.status.upper() != "ACCEPTED":
            raise ExternalCallError(
                f"Execution agent did not accept order {request.order_id}: {accepted.status}",
                retryable=False,
            )
        log.debug("Execution agent accepted %s", request.order_id)
