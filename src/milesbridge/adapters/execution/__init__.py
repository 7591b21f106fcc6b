"""Execution agent adapters."""

from __future__ import annotations

from .agent import EXECUTE_PATH, ExecuteAccepted, HttpExecutionAgent

__all__ = ["EXECUTE_PATH", "ExecuteAccepted", "HttpExecutionAgent"]
