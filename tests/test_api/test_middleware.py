"""Tests for the error handler and request id middleware."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from property_settlement.api.middleware import setup_middleware, status_for
from property_settlement.domain.compliance import ProofRequirement
from property_settlement.domain.enums import ProofType, RequirementFailure
from property_settlement.domain.exceptions import (
    ComplianceError,
    InvalidStateTransitionError,
    LedgerInconsistencyError,
    OfferNotFoundError,
    UpstreamError,
    ValidationError,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

ERRORS = {
    "validation": ValidationError("bad price", field="offer_price"),
    "compliance": ComplianceError(
        [ProofRequirement(ProofType.ACCREDITATION, RequirementFailure.MISSING, required=100)]
    ),
    "missing": OfferNotFoundError("offer-x"),
    "transition": InvalidStateTransitionError("offer", "rejected", "accept"),
    "upstream": UpstreamError("node down", operation="transfer_property"),
    "inconsistent": LedgerInconsistencyError("offer-x", "tx-1", "paused"),
    "crash": RuntimeError("boom"),
}


def _app() -> FastAPI:
    app = FastAPI()
    setup_middleware(app)

    @app.get("/raise/{name}")
    async def raise_error(name: str) -> dict:
        raise ERRORS[name]

    @app.get("/ok")
    async def ok() -> dict:
        return {"ok": True}

    return app


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[httpx.AsyncClient, None]:
    transport = httpx.ASGITransport(app=_app())
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.mark.asyncio
class TestErrorHandler:
    @pytest.mark.parametrize(
        ("name", "status", "reason"),
        [
            ("validation", 422, "validation"),
            ("compliance", 403, "compliance"),
            ("missing", 404, "not_found"),
            ("transition", 409, "conflict"),
            ("upstream", 502, "upstream"),
            ("inconsistent", 500, "inconsistency"),
        ],
    )
    async def test_domain_errors_map_to_status(
        self, client: httpx.AsyncClient, name: str, status: int, reason: str
    ) -> None:
        response = await client.get(f"/raise/{name}")

        assert response.status_code == status
        body = response.json()
        assert body["reason"] == reason
        assert set(body) == {"error", "reason", "message", "details"}

    async def test_compliance_body_lists_missing_proofs(self, client: httpx.AsyncClient) -> None:
        body = (await client.get("/raise/compliance")).json()
        assert body["details"]["missing"] == [
            {"type": "accreditation", "reason": "missing", "required": 100}
        ]

    async def test_unexpected_error_is_opaque(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/raise/crash")
        assert response.status_code == 500
        assert response.json()["error"] == "INTERNAL_ERROR"
        assert "boom" not in response.text


@pytest.mark.asyncio
class TestRequestId:
    async def test_generated_when_absent(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/ok")
        assert response.headers["X-Request-ID"]

    async def test_echoed_when_present(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/ok", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"


def test_status_for_uses_reason() -> None:
    assert status_for(UpstreamError("x", operation="send_value")) == 502
    assert status_for(ValidationError("x")) == 422
