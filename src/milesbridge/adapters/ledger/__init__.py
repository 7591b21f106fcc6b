"""Escrow ledger adapter."""

from __future__ import annotations

from .escrow import ESCROW_ABI, RELEASE_GAS_LIMIT, Web3EscrowLedger, order_id_digest

__all__ = ["ESCROW_ABI", "RELEASE_GAS_LIMIT", "Web3EscrowLedger", "order_id_digest"]
