"""Application configuration helpers."""

from __future__ import annotations

from .attestation import (
    AttestationConfig,
    ProofBackendName,
    ReclaimConfig,
    get_attestation_config,
    get_callback_base_url,
    get_reclaim_config,
)
from .env import env_float, optional_env_var, require_env_var, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .execution import ExecutionAgentConfig, get_execution_agent_config
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy
from .ledger import LedgerConfig, get_ledger_config
from .logging import configure_logging
from .server import ServerConfig, get_server_config
from .storage import DatabaseConfig, StorageConfig, get_database_config, get_storage_config

__all__ = [
    "AttestationConfig",
    "ConfigurationError",
    "DatabaseConfig",
    "ExecutionAgentConfig",
    "LedgerConfig",
    "MissingConfigurationError",
    "ProofBackendName",
    "RateLimit",
    "ReclaimConfig",
    "ResilienceConfig",
    "RetryPolicy",
    "ServerConfig",
    "StorageConfig",
    "configure_logging",
    "env_float",
    "get_attestation_config",
    "get_callback_base_url",
    "get_database_config",
    "get_execution_agent_config",
    "get_ledger_config",
    "get_reclaim_config",
    "get_server_config",
    "get_storage_config",
    "optional_env_var",
    "require_env_var",
    "require_env_vars",
]
