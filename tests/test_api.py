"""Tests for the FastAPI endpoints."""

from datetime import timedelta

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update

from swaprelay.api.app import create_app
from swaprelay.api.dependencies import get_engine, get_reconciler
from swaprelay.config import get_settings
from swaprelay.errors import RPCError
from swaprelay.ledger.models import IntentStatus, SwapIntent
from swaprelay.ledger.repository import utcnow
from swaprelay.relay.types import MANUAL_REFUND_MESSAGE
from swaprelay.services.reconciliation import Reconciler

from conftest import create_intent


def payload_for(request, **overrides) -> dict:
    auth = request.authorization
    payload = {
        "user_id": request.user_id,
        "user_address": request.user_address,
        "input_asset": request.input_asset,
        "output_asset": request.output_asset,
        "input_amount": str(request.input_amount),
        "authorization": {
            "from_address": auth.from_address,
            "to_address": auth.to_address,
            "value": str(auth.value),
            "valid_after": auth.valid_after,
            "valid_before": auth.valid_before,
            "nonce": auth.nonce,
            "signature": auth.signature,
        },
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def test_app(engine, session_scope, alerts):
    """Application wired to the in-memory engine and database."""
    app = create_app()
    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_reconciler] = lambda: Reconciler(session_scope, alerts=alerts)
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
async def client(test_app):
    """Create async test client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    @pytest.mark.asyncio
    async def test_health_check(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "swaprelay"}

    @pytest.mark.asyncio
    async def test_detailed_health_hides_secrets(self, client):
        response = await client.get("/health/detailed")

        assert response.status_code == 200
        data = response.json()
        assert "environment" in data["config"]
        assert "relayer_private_key" not in data["config"]


class TestSwapEndpoints:
    """Tests for the public swap API."""

    @pytest.mark.asyncio
    async def test_submit_swap(self, client, make_request):
        response = await client.post("/api/v1/swaps", json=payload_for(make_request()))

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["status"] == "completed"
        assert data["net_output_amount"] == "97414400"
        assert set(data["tx_refs"]) == {"pull", "approval", "swap", "platform_fee", "disbursement"}
        assert data["requires_reconciliation"] is False

    @pytest.mark.asyncio
    async def test_rejected_swap_is_not_an_http_error(self, client, chain, make_request):
        response = await client.post("/api/v1/swaps", json=payload_for(make_request(balance=1)))

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is False
        assert data["status"] == "failed"
        assert data["error_code"] == "insufficient_balance"
        assert chain.sent == []

    @pytest.mark.asyncio
    async def test_manual_refund_tells_user_to_contact_support(self, client, chain, make_request):
        chain.revert.add("swap")
        chain.reject.add("transfer")

        response = await client.post("/api/v1/swaps", json=payload_for(make_request()))

        data = response.json()
        assert data["status"] == "failed_needs_manual_refund"
        assert data["error_code"] == "exchange_reverted"
        assert data["error"] == MANUAL_REFUND_MESSAGE
        assert "contact support" in data["error"]
        assert data["tx_refs"]["swap"] not in data["error"]

        fetched = (await client.get(f"/api/v1/swaps/{data['intent_id']}")).json()
        assert fetched["error"] == MANUAL_REFUND_MESSAGE

        detail = (await client.get(f"/admin/intents/{data['intent_id']}")).json()
        assert data["tx_refs"]["swap"] in detail["error_message"]

    @pytest.mark.asyncio
    async def test_reused_nonce(self, client, make_request):
        payload = payload_for(make_request())
        await client.post("/api/v1/swaps", json=payload)

        response = await client.post("/api/v1/swaps", json=payload)

        assert response.json()["error_code"] == "nonce_reused"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "field,value",
        [
            ("user_address", "0x1234"),
            ("input_amount", "-5"),
            ("input_amount", "1.5"),
            ("slippage_bps", 20000),
        ],
    )
    async def test_payload_validation(self, client, make_request, field, value):
        payload = payload_for(make_request(), **{field: value})

        response = await client.post("/api/v1/swaps", json=payload)

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_bad_signature_format(self, client, make_request):
        payload = payload_for(make_request())
        payload["authorization"]["signature"] = "0xdead"

        response = await client.post("/api/v1/swaps", json=payload)

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_get_swap(self, client, make_request):
        created = await client.post("/api/v1/swaps", json=payload_for(make_request()))
        intent_id = created.json()["intent_id"]

        response = await client.get(f"/api/v1/swaps/{intent_id}")

        assert response.status_code == 200
        assert response.json()["status"] == "completed"
        assert response.json()["gross_output_amount"] == "99700000"

    @pytest.mark.asyncio
    async def test_get_unknown_swap(self, client):
        response = await client.get("/api/v1/swaps/" + "0" * 32)

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_relayer_info(self, client, signer):
        response = await client.get("/api/v1/relayer")

        assert response.status_code == 200
        data = response.json()
        assert data["relayer_address"] == signer.address
        assert "USDC" in data["supported_assets"]


class TestAdminEndpoints:
    """Tests for operator endpoints."""

    @pytest.mark.asyncio
    async def test_list_and_filter(self, client, store):
        await create_intent(store, "a" * 32, status=IntentStatus.FUNDS_PULLED)
        await create_intent(store, "b" * 32)

        everything = await client.get("/admin/intents")
        pulled = await client.get("/admin/intents", params={"status": "funds_pulled"})

        assert len(everything.json()) == 2
        assert [i["id"] for i in pulled.json()] == ["a" * 32]

    @pytest.mark.asyncio
    async def test_intent_detail_has_history(self, client, store):
        await create_intent(store, "a" * 32, status=IntentStatus.FUNDS_PULLED)

        response = await client.get("/admin/intents/" + "a" * 32)

        assert response.status_code == 200
        events = [e["to_status"] for e in response.json()["events"]]
        assert events == ["created", "validating", "funds_pulled"]

    @pytest.mark.asyncio
    async def test_intent_detail_unknown(self, client):
        assert (await client.get("/admin/intents/" + "0" * 32)).status_code == 404

    @pytest.mark.asyncio
    async def test_refund(self, client, store, chain):
        await create_intent(store, "a" * 32, status=IntentStatus.FUNDS_PULLED)

        response = await client.post("/admin/intents/" + "a" * 32 + "/refund")

        assert response.status_code == 200
        assert response.json()["status"] == "refunded"
        assert len(chain.sent_of("transfer")) == 1

    @pytest.mark.asyncio
    async def test_refund_refused_while_executing(self, client, store, chain):
        await create_intent(store, "a" * 32, status=IntentStatus.SWAP_EXECUTING)

        response = await client.post("/admin/intents/" + "a" * 32 + "/refund")

        assert response.status_code == 409
        assert chain.sent == []

    @pytest.mark.asyncio
    async def test_refund_unknown(self, client):
        response = await client.post("/admin/intents/" + "0" * 32 + "/refund")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_reconcile(self, client, store):
        await create_intent(store, "a" * 32, status=IntentStatus.SWAP_EXECUTING)
        await store.record_for_reconciliation(
            "a" * 32,
            {"intent_id": "a" * 32, "target_status": "completed", "net_output_amount": 5},
        )

        response = await client.post("/admin/reconcile", params={"limit": 5})

        assert response.status_code == 200
        assert response.json()["reconciled"] == 1
        assert (await store.get("a" * 32)).net_output_amount == 5

    @pytest.mark.asyncio
    async def test_stuck(self, client, store, session_scope):
        await create_intent(store, "a" * 32, status=IntentStatus.FUNDS_PULLED)
        await create_intent(store, "b" * 32, status=IntentStatus.FUNDS_PULLED)
        async with session_scope() as session:
            await session.execute(
                update(SwapIntent)
                .where(SwapIntent.id == "a" * 32)
                .values(updated_at=utcnow() - timedelta(hours=1))
            )

        response = await client.get("/admin/stuck", params={"minutes": 10})

        assert [i["id"] for i in response.json()] == ["a" * 32]

    @pytest.mark.asyncio
    async def test_relayer_status(self, client, chain):
        chain.native_balance = 10**16

        response = await client.get("/admin/relayer")

        assert response.status_code == 200
        data = response.json()
        assert data["level"] == "warning"
        assert data["balance"] == "0.01"

    @pytest.mark.asyncio
    async def test_relayer_status_unavailable(self, client, chain, monkeypatch):
        async def broken(address):
            raise RPCError("node down")

        monkeypatch.setattr(chain, "get_native_balance", broken)

        response = await client.get("/admin/relayer")

        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_admin_token_required(self, client, monkeypatch):
        monkeypatch.setattr(get_settings(), "admin_token", "secret")

        denied = await client.get("/admin/intents")
        allowed = await client.get("/admin/intents", headers={"X-Admin-Token": "secret"})

        assert denied.status_code == 401
        assert allowed.status_code == 200

    @pytest.mark.asyncio
    async def test_admin_closed_in_production_without_token(self, client, monkeypatch):
        monkeypatch.setattr(get_settings(), "environment", "production")

        response = await client.get("/admin/intents")

        assert response.status_code == 403
