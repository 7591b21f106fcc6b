from __future__ import annotations

import asyncio
import base64
import json
from collections.abc import Callable  # noqa: TC003
from dataclasses import replace
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from milesbridge.adapters.attestation import (
    MockAttestor,
    ReclaimAttestor,
    SignedProofBackend,
    build_attestor,
    encode_evidence,
    sign,
)
from milesbridge.adapters.attestation.reclaim import SESSION_INIT_PATH
from milesbridge.adapters.http_resilience import ResilienceConfig, ResilientClient, RetryPolicy
from milesbridge.config import AttestationConfig, ReclaimConfig
from milesbridge.config.attestation import MOCK_ATTESTOR_KEY
from milesbridge.domain.errors import BackendNotConfiguredError, ExternalCallError
from milesbridge.domain.model import PredicateOp, Proof, ProofType

CALLBACK_BASE = "http://marketplace.test"
RECLAIM_URL = "https://reclaim.test"
# throwaway secp256k1 key
RECLAIM_SECRET = "0x" + "4c" * 32


def _make_client_factory(
    handler: Callable[[httpx.Request], httpx.Response],
) -> Callable[[ResilienceConfig], ResilientClient]:
    async def async_handler(request: httpx.Request) -> httpx.Response:
        return handler(request)

    def factory(resilience: ResilienceConfig) -> ResilientClient:
        return ResilientClient(resilience, transport=httpx.MockTransport(async_handler))

    return factory


def _reclaim_config() -> ReclaimConfig:
    return ReclaimConfig(
        app_id="app-1",
        app_secret=RECLAIM_SECRET,
        provider_id="provider-1",
        resilience=ResilienceConfig(
            name="reclaim",
            base_url=RECLAIM_URL,
            timeout_seconds=1.0,
            retry=RetryPolicy(total=0),
        ),
    )


def _proof(attestor: SignedProofBackend, balance: object = 8030.0) -> Proof:
    return attestor.generate_proof(
        domain="www.united.com",
        response_data={"airmiles_balance": balance},
        predicate_field="airmiles_balance",
        predicate_value=8030,
        predicate_op=PredicateOp.GTE,
    )


class TestMockAttestor:
    def test_generated_proof_verifies(self) -> None:
        attestor = MockAttestor(callback_base_url=CALLBACK_BASE)

        proof = _proof(attestor)

        assert proof.proof_type is ProofType.MOCK
        assert proof.attestations.authenticity
        assert proof.attestations.predicate_satisfied
        assert proof.predicate_expr == "airmiles_balance >= 8030"
        assert attestor.verify_proof(proof)
        evidence = json.loads(base64.b64decode(proof.raw_proof))
        assert evidence["type"] == "mock_zktls_proof"
        assert evidence["actualValue"] == 8030.0
        assert evidence["domain"] == "www.united.com"

    def test_non_numeric_balance_does_not_satisfy_the_predicate(self) -> None:
        attestor = MockAttestor(callback_base_url=CALLBACK_BASE)

        proof = _proof(attestor, balance="8030")

        assert not proof.attestations.predicate_satisfied
        assert attestor.verify_proof(proof)

    def test_tampered_proof_fails(self) -> None:
        attestor = MockAttestor(callback_base_url=CALLBACK_BASE)
        proof = _proof(attestor)
        forged = encode_evidence({"airmiles_balance": 10_000_000})

        proof.raw_proof = forged

        assert not attestor.verify_proof(proof)

    def test_signature_from_another_key_fails(self) -> None:
        issuer = MockAttestor(callback_base_url=CALLBACK_BASE, signing_key="other")
        verifier = MockAttestor(callback_base_url=CALLBACK_BASE)

        assert not verifier.verify_proof(_proof(issuer))

    def test_malformed_raw_proof_fails(self) -> None:
        attestor = MockAttestor(callback_base_url=CALLBACK_BASE)
        proof = _proof(attestor)
        proof.raw_proof = "%%% not base64 %%%"
        proof.signature = sign(proof.raw_proof, MOCK_ATTESTOR_KEY)

        assert not attestor.verify_proof(proof)

    def test_verification_url_posts_back_to_the_callback(self) -> None:
        attestor = MockAttestor(callback_base_url=f"{CALLBACK_BASE}/")

        request = asyncio.run(attestor.create_verification_request("order-1", "united"))

        url = urlsplit(request.verification_url)
        assert f"{url.scheme}://{url.netloc}{url.path}" == f"{CALLBACK_BASE}/callback/proof"
        assert parse_qs(url.query) == {"orderId": ["order-1"]}
        assert request.session_id == "order-1"


class TestBuildAttestor:
    def test_mock_backend(self) -> None:
        config = AttestationConfig(backend="mock", callback_base_url=CALLBACK_BASE)

        attestor = build_attestor(config)

        assert isinstance(attestor, MockAttestor)

    def test_reclaim_without_credentials_fails_per_request(self) -> None:
        attestor = build_attestor(
            AttestationConfig(backend="reclaim", callback_base_url=CALLBACK_BASE)
        )

        assert isinstance(attestor, ReclaimAttestor)
        with pytest.raises(BackendNotConfiguredError):
            asyncio.run(attestor.create_verification_request("order-1", "united"))


class TestReclaimAttestor:
    def test_session_is_opened_and_share_link_built(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"sessionId": "sess-42", "status": "ok"})

        attestor = ReclaimAttestor(
            config=_reclaim_config(),
            callback_base_url=CALLBACK_BASE,
            client_factory=_make_client_factory(handler),
        )

        request = asyncio.run(attestor.create_verification_request("order-1", "united"))

        (sent,) = seen
        assert str(sent.url) == f"{RECLAIM_URL}{SESSION_INIT_PATH}"
        body = json.loads(sent.content)
        assert body["appId"] == "app-1"
        assert body["providerId"] == "provider-1"
        assert body["signature"].startswith("0x")
        assert request.session_id == "sess-42"
        share = urlsplit(request.verification_url)
        template = json.loads(parse_qs(share.query)["template"][0])
        assert template["sessionId"] == "sess-42"
        assert template["callbackUrl"] == f"{CALLBACK_BASE}/callback/proof?orderId=order-1"
        assert template["signature"] == body["signature"]

    def test_proofs_are_signed_with_the_app_secret(self) -> None:
        attestor = ReclaimAttestor(config=_reclaim_config(), callback_base_url=CALLBACK_BASE)

        proof = _proof(attestor)

        assert proof.proof_type is ProofType.RECLAIM
        assert attestor.verify_proof(proof)
        assert not MockAttestor(callback_base_url=CALLBACK_BASE).verify_proof(proof)

    @pytest.mark.parametrize(("status", "retryable"), [(500, True), (401, False)])
    def test_http_failures_are_classified(self, status: int, retryable: bool) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, json={"error": "nope"})

        attestor = ReclaimAttestor(
            config=_reclaim_config(),
            callback_base_url=CALLBACK_BASE,
            client_factory=_make_client_factory(handler),
        )

        with pytest.raises(ExternalCallError) as exc:
            asyncio.run(attestor.create_verification_request("order-1", "united"))

        assert exc.value.retryable is retryable

    def test_response_without_session_id(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"status": "ok"})

        attestor = ReclaimAttestor(
            config=_reclaim_config(),
            callback_base_url=CALLBACK_BASE,
            client_factory=_make_client_factory(handler),
        )

        with pytest.raises(ExternalCallError, match="sessionId"):
            asyncio.run(attestor.create_verification_request("order-1", "united"))

    def test_invalid_secret_is_a_configuration_error(self) -> None:
        attestor = ReclaimAttestor(
            config=replace(_reclaim_config(), app_secret="0x1234"),
            callback_base_url=CALLBACK_BASE,
            client_factory=_make_client_factory(lambda request: httpx.Response(500)),
        )

        with pytest.raises(BackendNotConfiguredError):
            asyncio.run(attestor.create_verification_request("order-1", "united"))
