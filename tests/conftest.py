"""Shared test fixtures for the Property Settlement test suite.

Provides:
    - A throwaway SQLite database per test (file-backed, NullPool)
    - A SimulatedLedgerClient with failure injection
    - Fully wired services over both

Factories for rows in a known state live in tests/factories.py.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
import pytest_asyncio

from property_settlement.infrastructure.database.engine import (
    create_engine_for_url,
    make_session_factory,
)
from property_settlement.infrastructure.database.orm_models import Base
from property_settlement.infrastructure.ledger.simulated import SimulatedLedgerClient
from property_settlement.services.compliance_service import ComplianceGate
from property_settlement.services.consumption_worker import ConsumptionWorker
from property_settlement.services.escrow_coordinator import AccountDirectory, EscrowCoordinator
from property_settlement.services.offer_service import OfferService
from property_settlement.services.property_service import PropertyService
from property_settlement.services.proof_service import ProofService
from property_settlement.services.settlement_service import SettlementOrchestrator
from tests.factories import ACCOUNTS, RecordingSleep

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


# ---------------------------------------------------------------------------
# Infrastructure Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def session_factory(tmp_path: Path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """A fresh SQLite database with all tables created."""
    engine = create_engine_for_url(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield make_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def ledger() -> SimulatedLedgerClient:
    return SimulatedLedgerClient()


@pytest.fixture
def directory() -> AccountDirectory:
    return AccountDirectory(ACCOUNTS)


@pytest.fixture
def sleeper() -> RecordingSleep:
    return RecordingSleep()


@pytest_asyncio.fixture
async def worker(
    session_factory: async_sessionmaker[AsyncSession],
    ledger: SimulatedLedgerClient,
    sleeper: RecordingSleep,
) -> AsyncGenerator[ConsumptionWorker, None]:
    w = ConsumptionWorker(
        session_factory,
        ledger,
        max_retries=3,
        retry_delay_seconds=60,
        placeholder_wait_seconds=120,
        sleep=sleeper,
    )
    yield w
    await w.shutdown()


# ---------------------------------------------------------------------------
# Service Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def compliance(session_factory: async_sessionmaker[AsyncSession]) -> ComplianceGate:
    return ComplianceGate(session_factory)


@pytest.fixture
def escrow(ledger: SimulatedLedgerClient, directory: AccountDirectory) -> EscrowCoordinator:
    return EscrowCoordinator(ledger, directory)


@pytest.fixture
def property_service(
    session_factory: async_sessionmaker[AsyncSession],
    ledger: SimulatedLedgerClient,
    worker: ConsumptionWorker,
) -> PropertyService:
    return PropertyService(session_factory, ledger, worker)


@pytest.fixture
def proof_service(
    session_factory: async_sessionmaker[AsyncSession],
    ledger: SimulatedLedgerClient,
) -> ProofService:
    return ProofService(session_factory, ledger, proof_lifetime_days=90)


@pytest.fixture
def offer_service(
    session_factory: async_sessionmaker[AsyncSession],
    compliance: ComplianceGate,
    escrow: EscrowCoordinator,
) -> OfferService:
    return OfferService(session_factory, compliance, escrow, offer_lifetime_days=7)


@pytest.fixture
def settlement(
    session_factory: async_sessionmaker[AsyncSession],
    ledger: SimulatedLedgerClient,
    escrow: EscrowCoordinator,
    compliance: ComplianceGate,
) -> SettlementOrchestrator:
    return SettlementOrchestrator(session_factory, ledger, escrow, compliance)
