"""HTTP-level tests for the property, offer and settlement routes.

The app is assembled from the routers over the test runtime (SQLite +
simulated ledger), without the lifespan's database, Redis or MCP setup.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from property_settlement.api import deps
from property_settlement.api.middleware import setup_middleware
from property_settlement.api.routes.offers import router as offers_router
from property_settlement.api.routes.proofs import router as proofs_router
from property_settlement.api.routes.properties import router as properties_router
from property_settlement.api.routes.settlement import router as settlement_router
from property_settlement.config import Settings
from property_settlement.runtime import SettlementRuntime, set_runtime
from tests.factories import make_property

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from property_settlement.infrastructure.ledger.simulated import SimulatedLedgerClient
    from property_settlement.services.consumption_worker import ConsumptionWorker
    from property_settlement.services.escrow_coordinator import AccountDirectory


@pytest_asyncio.fixture
async def api(
    session_factory: async_sessionmaker[AsyncSession],
    ledger: SimulatedLedgerClient,
    directory: AccountDirectory,
    worker: ConsumptionWorker,
) -> AsyncGenerator[httpx.AsyncClient, None]:
    set_runtime(
        SettlementRuntime.build(
            Settings(), session_factory, ledger, directory=directory, worker=worker
        )
    )
    app = FastAPI()
    setup_middleware(app)
    for router in (properties_router, proofs_router, offers_router, settlement_router):
        app.include_router(router)

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    set_runtime(None)


async def _offer(api: httpx.AsyncClient, buyer: str = "B", price: int = 100) -> str:
    response = await api.post(
        "/api/v1/offers",
        json={
            "property_id": "P1",
            "buyer_account_id": buyer,
            "buyer_user_identifier": f"user-{buyer}",
            "offer_price": price,
        },
    )
    assert response.status_code == 201, response.text
    return response.json()["offer_id"]


@pytest.mark.asyncio
class TestPropertyRoutes:
    async def test_mint_verify_list(self, api: httpx.AsyncClient, worker: ConsumptionWorker) -> None:
        response = await api.post(
            "/api/v1/properties",
            json={
                "owner_account_id": "S",
                "owner_user_identifier": "user-S",
                "title": "Canal Street flat",
                "price": 100,
                "property_id": "P1",
            },
        )
        assert response.status_code == 201, response.text
        assert response.json()["status"] == "draft"
        await worker.drain()

        approved = await api.post(
            "/api/v1/properties/P1/verification/approve", json={"performed_by": "admin"}
        )
        assert approved.json()["verification_status"] == "verified"

        listed = await api.post("/api/v1/properties/P1/list", json={})
        assert listed.json()["status"] == "listed"

        consumption = await api.get("/api/v1/properties/P1/consumption")
        assert consumption.json()["consume_status"] == "consumed"

    async def test_unknown_property_is_404(self, api: httpx.AsyncClient) -> None:
        response = await api.get("/api/v1/properties/NOPE")
        assert response.status_code == 404
        assert response.json()["error"] == "PROPERTY_NOT_FOUND"


@pytest.mark.asyncio
class TestOfferAndSettlementRoutes:
    async def test_full_flow(
        self,
        api: httpx.AsyncClient,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        await make_property(session_factory)
        offer_id = await _offer(api)

        accepted = await api.post(f"/api/v1/offers/{offer_id}/accept", json={"actor": "user-S"})
        assert accepted.json()["status"] == "accepted"

        ready = await api.get(f"/api/v1/settlements/{offer_id}/ready")
        assert ready.json()["ready"] is True

        settled = await api.post(f"/api/v1/settlements/{offer_id}", json={"actor": "user-S"})
        assert settled.status_code == 200, settled.text
        assert settled.json()["new_owner"] == "B"

        record = await api.get(f"/api/v1/settlements/{offer_id}")
        assert record.json()["release_tx_id"] == settled.json()["release_tx_id"]

        events = await api.get(f"/api/v1/offers/{offer_id}/events")
        assert "SETTLEMENT_COMPLETED" in {e["event_type"] for e in events.json()}

    async def test_ineligible_buyer_is_403(
        self,
        api: httpx.AsyncClient,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        await make_property(
            session_factory, requires_accreditation=True, accreditation_threshold=1_000_000
        )
        response = await api.post(
            "/api/v1/offers",
            json={
                "property_id": "P1",
                "buyer_account_id": "B",
                "buyer_user_identifier": "user-B",
                "offer_price": 100,
            },
        )
        assert response.status_code == 403
        assert response.json()["details"]["missing"][0]["reason"] == "missing"

    async def test_release_failure_is_500_inconsistency(
        self,
        api: httpx.AsyncClient,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: SimulatedLedgerClient,
    ) -> None:
        await make_property(session_factory)
        offer_id = await _offer(api)
        await api.post(f"/api/v1/offers/{offer_id}/accept", json={})
        ledger.inject_failure("release_escrow")

        response = await api.post(f"/api/v1/settlements/{offer_id}", json={})

        assert response.status_code == 500
        assert response.json()["reason"] == "inconsistency"
        status = await api.get(f"/api/v1/offers/{offer_id}/status")
        assert status.json()["needs_reconciliation"] is True

    async def test_reject_then_accept_is_409(
        self,
        api: httpx.AsyncClient,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        await make_property(session_factory)
        offer_id = await _offer(api)
        await api.post(f"/api/v1/offers/{offer_id}/reject", json={"reason": "too low"})

        response = await api.post(f"/api/v1/offers/{offer_id}/accept", json={})

        assert response.status_code == 409
        assert response.json()["error"] == "INVALID_STATE_TRANSITION"


@pytest.mark.asyncio
class TestIdempotency:
    async def test_replayed_key_is_rejected(
        self,
        api: httpx.AsyncClient,
        session_factory: async_sessionmaker[AsyncSession],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        claimed: set[str] = set()

        async def fake_claim(scope: str, key: str) -> bool:
            if (scope, key) in claimed:
                return False
            claimed.add((scope, key))
            return True

        monkeypatch.setattr(deps, "redis_available", lambda: True)
        monkeypatch.setattr(deps, "claim_idempotency", fake_claim)
        await make_property(session_factory)
        body = {
            "property_id": "P1",
            "buyer_account_id": "B",
            "buyer_user_identifier": "user-B",
            "offer_price": 100,
        }
        headers = {"Idempotency-Key": "abc"}

        first = await api.post("/api/v1/offers", json=body, headers=headers)
        second = await api.post("/api/v1/offers", json=body, headers=headers)

        assert first.status_code == 201
        assert second.status_code == 409
        assert second.json()["error"] == "DUPLICATE_OPERATION"

    async def test_key_released_when_handler_fails(
        self,
        api: httpx.AsyncClient,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        released: list[str] = []

        async def fake_claim(scope: str, key: str) -> bool:
            return True

        async def fake_release(scope: str, key: str) -> None:
            released.append(key)

        monkeypatch.setattr(deps, "redis_available", lambda: True)
        monkeypatch.setattr(deps, "claim_idempotency", fake_claim)
        monkeypatch.setattr(deps, "release_idempotency", fake_release)

        response = await api.post(
            "/api/v1/offers",
            json={
                "property_id": "NOPE",
                "buyer_account_id": "B",
                "buyer_user_identifier": "user-B",
                "offer_price": 100,
            },
            headers={"Idempotency-Key": "xyz"},
        )

        assert response.status_code == 404
        assert released == ["xyz"]
