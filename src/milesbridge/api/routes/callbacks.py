"""Inbound webhooks from the proof backend and the execution agent."""

from __future__ import annotations

import logging
from typing import Annotated
from urllib.parse import unquote

from fastapi import APIRouter, Query, Request
from fastapi.concurrency import run_in_threadpool

from milesbridge.api.dependencies import ServicesDep
from milesbridge.api.schemas import TransferCallbackRequest
from milesbridge.domain.evidence import safe_json_loads

log = logging.getLogger(__name__)

router = APIRouter(prefix="/callback", tags=["callbacks"])


def parse_proof_body(raw: bytes) -> object:
    """Decode a proof callback body.

    Attestation SDKs post JSON, URL-encoded JSON (sometimes as the lone key of a
    form body) or plain text. Whatever cannot be decoded is returned as text and
    left to balance extraction.
    """

    text = raw.decode("utf-8", errors="replace").strip()
    if not text:
        return None
    for candidate in (text, unquote(text), unquote(text.removesuffix("="))):
        document = safe_json_loads(candidate)
        if document is not None:
            return document
    return text


@router.post("/proof")
async def proof_callback(
    request: Request,
    services: ServicesDep,
    order_id: Annotated[str, Query(alias="orderId", min_length=1)],
) -> dict[str, object]:
    document = parse_proof_body(await request.body())
    log.info(
        "Proof callback for order %s (%s)",
        order_id,
        request.headers.get("content-type", "no content type"),
    )
    outcome = await run_in_threadpool(services.marketplace.record_proof, order_id, document)
    return {
        "success": outcome.verified,
        "orderId": outcome.order.id,
        "status": outcome.order.status,
        "balance": outcome.balance,
        "proofId": outcome.proof.id if outcome.proof else None,
        "message": outcome.order.error_msg,
    }


@router.post("/transfer")
def transfer_callback(body: TransferCallbackRequest, services: ServicesDep) -> dict[str, object]:
    order = services.orchestrator.complete_transfer(
        body.order_id, body.confirmation_code, body.ticket_details
    )
    return {
        "orderId": order.id,
        "status": order.status,
        "message": "Transfer complete. Waiting for buyer approval to release escrow.",
    }
