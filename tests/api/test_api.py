from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import pytest
from fastapi.testclient import TestClient

from milesbridge.api import create_app
from milesbridge.api.routes.callbacks import parse_proof_body
from milesbridge.app import build_services
from milesbridge.config import AttestationConfig, ExecutionAgentConfig, LedgerConfig
from milesbridge.domain.errors import ExternalCallError
from milesbridge.domain.model import OrderStatus
from tests.helpers.orders import add_order, status_of

if TYPE_CHECKING:
    from collections.abc import Iterator

    from milesbridge.adapters.sqlalchemy import Database
    from milesbridge.adapters.vault import SealedBoxVault
    from milesbridge.app import Services
    from tests.helpers.fakes import FakeExecutionAgent, FakeLedger

CALLBACK_BASE = "http://marketplace.test"
ADMIN_TOKEN = "test-admin-token"
ADMIN_HEADERS = {"X-Admin-Token": ADMIN_TOKEN}


def _services(
    database: Database,
    *,
    vault: SealedBoxVault | None,
    agent: FakeExecutionAgent,
    ledger: FakeLedger | None,
    ledger_config: LedgerConfig | None = None,
) -> Services:
    return build_services(
        database=database,
        attestation_config=AttestationConfig(backend="mock", callback_base_url=CALLBACK_BASE),
        ledger_config=ledger_config or LedgerConfig(),
        execution_config=ExecutionAgentConfig(),
        vault=vault,
        agent=agent,
        ledger=ledger,
    )


@pytest.fixture
def services(
    database: Database,
    vault: SealedBoxVault,
    agent: FakeExecutionAgent,
    ledger: FakeLedger,
    ledger_config: LedgerConfig,
) -> Services:
    return _services(
        database, vault=vault, agent=agent, ledger=ledger, ledger_config=ledger_config
    )


@pytest.fixture
def client(services: Services) -> Iterator[TestClient]:
    app = create_app(services, poll_in_process=False, admin_token=ADMIN_TOKEN)
    with TestClient(app, headers=ADMIN_HEADERS) as test_client:
        yield test_client


def _sell(client: TestClient, username: str = "seller@example.com") -> dict[str, Any]:
    response = client.post(
        "/sell/airmiles",
        json={"provider": "united", "username": username, "password": "hunter2"},
    )
    assert response.status_code == 200, response.text
    return response.json()


def _verified_order(client: TestClient, balance: int = 8030) -> str:
    order_id = _sell(client)["orderId"]
    response = client.post(
        "/callback/proof", params={"orderId": order_id}, json={"balance": balance}
    )
    assert response.status_code == 200, response.text
    return order_id


def _listed_order(client: TestClient) -> str:
    order_id = _verified_order(client)
    response = client.post(
        f"/orders/{order_id}/list", json={"price_per_mile": 0.015, "min_miles": 1000}
    )
    assert response.status_code == 200, response.text
    return order_id


def _escrow(client: TestClient, order_id: str, tx: str = "0xescrow") -> dict[str, Any]:
    response = client.post(
        f"/listings/{order_id}/confirm-escrow",
        json={
            "buyer_address": "0xBuyer",
            "escrow_tx": tx,
            "departure": "LAX",
            "destination": "NRT",
        },
    )
    assert response.status_code == 200, response.text
    return response.json()


def _transferred_order(client: TestClient) -> str:
    order_id = _listed_order(client)
    _escrow(client, order_id)
    response = client.post(
        "/callback/transfer",
        json={
            "orderId": order_id,
            "confirmationCode": "UA-7QX2",
            "ticketDetails": {"flight": "UA 837", "seat": "34C"},
        },
    )
    assert response.status_code == 200, response.text
    return order_id


def test_health(client: TestClient) -> None:
    body = client.get("/health").json()

    assert body["status"] == "ok"
    assert body["uptime"] >= 0


def test_providers_are_seeded(client: TestClient) -> None:
    body = client.get("/providers").json()

    ids = [provider["id"] for provider in body["providers"]]
    assert "united" in ids
    assert body["count"] == len(ids)


def test_full_lifecycle(
    client: TestClient, agent: FakeExecutionAgent, ledger: FakeLedger
) -> None:
    sold = _sell(client)
    order_id = sold["orderId"]
    assert sold["status"] == "PENDING"
    assert sold["verificationUrl"] == f"{CALLBACK_BASE}/callback/proof?orderId={order_id}"

    proof = client.post(
        "/callback/proof", params={"orderId": order_id}, json={"balance": "8,030"}
    ).json()
    assert proof["success"]
    assert proof["status"] == "VERIFIED"
    assert proof["balance"] == 8030.0

    detail = client.get(f"/orders/{order_id}").json()
    assert detail["order"]["amount"] == 8030.0
    assert "encrypted_creds" not in detail["order"]
    assert detail["proof"]["id"] == proof["proofId"]
    assert detail["proof"]["attestations"]["predicate_satisfied"]

    listed = client.post(
        f"/orders/{order_id}/list", json={"price_per_mile": 0.015, "min_miles": 1000}
    ).json()
    assert listed["status"] == "LISTED"
    assert listed["price"] == 120.45

    listings = client.get("/listings", params={"provider": "united"}).json()
    assert [listing["id"] for listing in listings["listings"]] == [order_id]
    assert listings["listings"][0]["miles_available"] == 8030.0

    quote_body = client.post(
        f"/listings/{order_id}/buy",
        json={
            "buyer_address": "0xBuyer",
            "miles_amount": 5000,
            "departure": "LAX",
            "destination": "NRT",
        },
    ).json()
    assert quote_body["total_cost_usd"] == "75.00"
    assert order_id in quote_body["instructions"]
    assert client.get(f"/orders/{order_id}").json()["order"]["status"] == "LISTED"

    escrowed = _escrow(client, order_id)
    assert escrowed["status"] == "ESCROWED"
    (dispatched,) = agent.requests
    assert dispatched.order_id == order_id
    assert dispatched.callback_url == f"{CALLBACK_BASE}/callback/transfer"
    assert client.get(f"/orders/{order_id}").json()["order"]["status"] == "TRANSFERRING"

    transferred = client.post(
        "/callback/transfer",
        json={"orderId": order_id, "confirmationCode": "UA-7QX2", "ticketDetails": {"seat": "34C"}},
    ).json()
    assert transferred["status"] == "TRANSFERRED"

    ticket = client.get(f"/buyer/orders/{order_id}/ticket").json()
    assert ticket["confirmation_code"] == "UA-7QX2"
    assert ticket["ticket_details"] == {"seat": "34C"}
    assert ticket["escrow_tx"] == "0xescrow"

    approved = client.post(f"/buyer/orders/{order_id}/approve").json()
    assert approved["status"] == "COMPLETED"
    assert ledger.released == [order_id]


class TestErrorMapping:
    def test_unknown_order(self, client: TestClient) -> None:
        response = client.get("/orders/missing")

        assert response.status_code == 404
        assert response.json() == {"error": "NOT_FOUND", "message": "Order missing not found"}

    def test_duplicate_intake(self, client: TestClient) -> None:
        first = _sell(client)

        response = client.post(
            "/sell/airmiles",
            json={"provider": "united", "username": "seller@example.com", "password": "x"},
        )

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "DUPLICATE_ORDER"
        assert body["existingOrderId"] == first["orderId"]

    def test_unsupported_asset(self, client: TestClient) -> None:
        response = client.post(
            "/sell/crypto", json={"provider": "united", "username": "u", "password": "p"}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_INPUT"

    def test_request_validation(self, client: TestClient) -> None:
        response = client.post("/sell/airmiles", json={"provider": "united", "username": "u"})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "INVALID_INPUT"
        assert "password" in body["message"]

    def test_below_minimum(self, client: TestClient) -> None:
        order_id = _listed_order(client)

        response = client.post(
            f"/listings/{order_id}/buy",
            json={
                "buyer_address": "0xBuyer",
                "miles_amount": 500,
                "departure": "LAX",
                "destination": "NRT",
            },
        )

        assert response.status_code == 400
        assert response.json()["error"] == "BELOW_MINIMUM"

    def test_listing_an_unverified_order(self, client: TestClient) -> None:
        order_id = _sell(client)["orderId"]

        response = client.post(
            f"/orders/{order_id}/list", json={"price_per_mile": 0.015, "min_miles": 1000}
        )

        assert response.status_code == 409
        assert response.json()["error"] == "CONFLICT"

    def test_duplicate_delivery_is_reported_as_stale(self, client: TestClient) -> None:
        order_id = _transferred_order(client)

        response = client.post(
            "/callback/transfer",
            json={"orderId": order_id, "confirmationCode": "UA-7QX2", "ticketDetails": None},
        )

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "CONFLICT"
        assert body["reason"] == "STALE_TRANSITION"

    def test_escrow_transaction_cannot_be_reused(
        self, client: TestClient, services: Services
    ) -> None:
        first = _listed_order(client)
        _escrow(client, first, tx="0xsame")
        second = add_order(services.database.unit_of_work, OrderStatus.LISTED, username="b@x.io")

        response = client.post(
            f"/listings/{second.id}/confirm-escrow",
            json={
                "buyer_address": "0xBuyer",
                "escrow_tx": "0xsame",
                "departure": "LAX",
                "destination": "NRT",
            },
        )

        assert response.status_code == 409
        assert status_of(services.database.unit_of_work, second.id) is OrderStatus.LISTED

    def test_missing_vault_is_a_configuration_error(
        self, database: Database, agent: FakeExecutionAgent
    ) -> None:
        services = _services(database, vault=None, agent=agent, ledger=None)

        with TestClient(create_app(services, poll_in_process=False)) as client:
            response = client.post(
                "/sell/airmiles", json={"provider": "united", "username": "u", "password": "p"}
            )

        assert response.status_code == 503
        assert response.json()["error"] == "CONFIG_MISSING"

    def test_upstream_failure(self, client: TestClient, ledger: FakeLedger) -> None:
        order_id = _transferred_order(client)
        client.post(f"/buyer/orders/{order_id}/dispute", json={"reason": "wrong flight"})
        ledger.release_error = ExternalCallError("node unreachable", retryable=True)

        response = client.post(f"/admin/orders/{order_id}/resolve", json={"action": "release"})

        assert response.status_code == 502
        assert response.json() == {
            "error": "INTERNAL_ERROR",
            "message": "An upstream service call failed",
            "retryable": True,
        }

    def test_unexpected_errors_are_masked(
        self, services: Services, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def boom() -> None:
            raise RuntimeError("database on fire")

        monkeypatch.setattr(services.marketplace, "providers", boom)
        app = create_app(services, poll_in_process=False)

        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.get("/providers")

        assert response.status_code == 500
        assert response.json() == {
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred",
        }


class TestProofCallback:
    def test_url_encoded_json(self, client: TestClient) -> None:
        order_id = _sell(client)["orderId"]
        context = json.dumps({"extractedParameters": {"AccountBalance": "12,500"}})
        document = quote(json.dumps({"claimData": {"context": context}}))

        response = client.post(
            "/callback/proof",
            params={"orderId": order_id},
            content=f"{document}=",
            headers={"content-type": "application/x-www-form-urlencoded"},
        )

        body = response.json()
        assert body["status"] == "VERIFIED"
        assert body["balance"] == 12500.0

    def test_unreadable_proof_is_held_for_review(self, client: TestClient) -> None:
        order_id = _sell(client)["orderId"]

        body = client.post(
            "/callback/proof", params={"orderId": order_id}, content=b"no balance here"
        ).json()

        assert not body["success"]
        assert body["status"] == "PENDING"
        assert body["balance"] == 0.0
        letters = client.get("/admin/dead-letters").json()["dead_letters"]
        assert [(letter["kind"], letter["order_id"]) for letter in letters] == [
            ("unverified_balance", order_id)
        ]

    def test_missing_order_id(self, client: TestClient) -> None:
        response = client.post("/callback/proof", json={"balance": 1})

        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_INPUT"

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            (b'{"balance": 5}', {"balance": 5}),
            (b"%7B%22balance%22%3A%205%7D", {"balance": 5}),
            (b"%7B%22balance%22%3A%205%7D=", {"balance": 5}),
            (b"  ", None),
            (b"plain text", "plain text"),
        ],
    )
    def test_parse_proof_body(self, raw: bytes, expected: object) -> None:
        assert parse_proof_body(raw) == expected


class TestSettlement:
    def test_dispute_and_refund(self, client: TestClient, ledger: FakeLedger) -> None:
        order_id = _transferred_order(client)

        disputed = client.post(f"/buyer/orders/{order_id}/dispute", json={"reason": "no seat"})
        resolved = client.post(f"/admin/orders/{order_id}/resolve", json={"action": "refund"})

        assert disputed.json()["status"] == "DISPUTED"
        assert resolved.json() == {"orderId": order_id, "status": "REFUNDED", "action": "refund"}
        assert ledger.refunded == [order_id]

    def test_dispute_without_a_body(self, client: TestClient) -> None:
        order_id = _transferred_order(client)

        body = client.post(f"/buyer/orders/{order_id}/dispute").json()

        assert body["status"] == "DISPUTED"
        assert body["reason"] is None

    def test_unknown_resolution(self, client: TestClient) -> None:
        order_id = _transferred_order(client)
        client.post(f"/buyer/orders/{order_id}/dispute")

        response = client.post(f"/admin/orders/{order_id}/resolve", json={"action": "split"})

        assert response.status_code == 400

    def test_failed_release_can_be_retried(self, client: TestClient, ledger: FakeLedger) -> None:
        order_id = _transferred_order(client)
        ledger.release_error = ExternalCallError("nonce too low", retryable=True)

        pending = client.post(f"/buyer/orders/{order_id}/approve").json()
        assert pending["status"] == "RELEASE_PENDING"
        letters = client.get("/admin/dead-letters").json()
        assert [letter["kind"] for letter in letters["dead_letters"]] == ["release_failed"]

        ledger.release_error = None
        retried = client.post(f"/admin/orders/{order_id}/retry-release")

        assert retried.json() == {"orderId": order_id, "status": "COMPLETED"}
        assert client.get("/admin/dead-letters").json()["count"] == 0
        resolved = client.get("/admin/dead-letters", params={"include_resolved": True}).json()
        assert resolved["dead_letters"][0]["resolved_at"] is not None

    def test_ticket_hidden_before_transfer(self, client: TestClient) -> None:
        order_id = _listed_order(client)

        response = client.get(f"/buyer/orders/{order_id}/ticket")

        assert response.status_code == 409


class TestOperatorViews:
    def test_failed_dispatch_shows_up_as_stuck(
        self, client: TestClient, agent: FakeExecutionAgent
    ) -> None:
        agent.error = ExternalCallError("agent down", retryable=True)
        order_id = _listed_order(client)
        _escrow(client, order_id)

        body = client.get("/admin/orders/stuck", params={"older_than_minutes": 0}).json()

        assert [order["id"] for order in body["orders"]] == [order_id]
        assert body["orders"][0]["status"] == "TRANSFERRING"
        assert "agent down" in body["orders"][0]["error_msg"]
        assert body["older_than_minutes"] == 0

    def test_stuck_defaults_to_the_configured_threshold(self, client: TestClient) -> None:
        body = client.get("/admin/orders/stuck").json()

        assert body == {"orders": [], "count": 0, "older_than_minutes": 60.0}

    def test_stuck_rejects_negative_thresholds(self, client: TestClient) -> None:
        response = client.get("/admin/orders/stuck", params={"older_than_minutes": -1})

        assert response.status_code == 400

    def test_orders_filter_by_status(self, client: TestClient) -> None:
        pending = _sell(client, "a@example.com")["orderId"]
        _sell(client, "b@example.com")

        body = client.get("/orders", params={"status": "PENDING"}).json()
        assert body["count"] == 2
        assert pending in {order["id"] for order in body["orders"]}
        assert client.get("/orders", params={"status": "LISTED"}).json()["count"] == 0


class TestAdminAuth:
    @pytest.fixture
    def anonymous(self, services: Services) -> Iterator[TestClient]:
        app = create_app(services, poll_in_process=False, admin_token=ADMIN_TOKEN)
        with TestClient(app) as test_client:
            yield test_client

    def test_missing_token_is_rejected(self, anonymous: TestClient) -> None:
        response = anonymous.get("/admin/dead-letters")

        assert response.status_code == 401
        assert response.json()["error"] == "UNAUTHORIZED"

    def test_wrong_token_is_rejected(self, anonymous: TestClient) -> None:
        response = anonymous.get("/admin/orders/stuck", headers={"X-Admin-Token": "guess"})

        assert response.status_code == 403
        assert response.json()["error"] == "FORBIDDEN"

    def test_unauthenticated_refund_leaves_the_dispute_open(
        self, client: TestClient, anonymous: TestClient, ledger: FakeLedger, services: Services
    ) -> None:
        order_id = _transferred_order(client)
        client.post(f"/buyer/orders/{order_id}/dispute", json={"reason": "no seat"})

        response = anonymous.post(f"/admin/orders/{order_id}/resolve", json={"action": "refund"})

        assert response.status_code == 401
        assert status_of(services.database.unit_of_work, order_id) is OrderStatus.DISPUTED
        assert ledger.refunded == []

    def test_admin_api_is_closed_without_a_configured_token(self, services: Services) -> None:
        with TestClient(create_app(services, poll_in_process=False)) as client:
            response = client.get("/admin/dead-letters", headers=ADMIN_HEADERS)

        assert response.status_code == 403
        assert "ADMIN_API_TOKEN" in response.json()["message"]

    def test_public_routes_need_no_token(self, anonymous: TestClient) -> None:
        assert anonymous.get("/providers").status_code == 200
