"""Process-wide wiring of the ledger client, consumption worker and services.

The REST API, the MCP tools and the simulation all share one ledger client
and one ConsumptionWorker per process: the worker's per-property locks and
task registry only guarantee a single writer if there is exactly one of it.

Usage:
    runtime = await init_runtime()
    offers = get_runtime().offers()
    ...
    await close_runtime()
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from property_settlement.config import Settings, get_settings
from property_settlement.infrastructure.database.engine import get_session_factory
from property_settlement.infrastructure.ledger import build_ledger_client
from property_settlement.logging_config import get_logger
from property_settlement.services.compliance_service import ComplianceGate
from property_settlement.services.consumption_worker import ConsumptionWorker
from property_settlement.services.escrow_coordinator import AccountDirectory, EscrowCoordinator
from property_settlement.services.offer_service import OfferService
from property_settlement.services.property_service import PropertyService
from property_settlement.services.proof_service import ProofService
from property_settlement.services.settlement_service import SettlementOrchestrator

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from property_settlement.domain.ledger_protocol import LedgerClient

logger = get_logger(__name__)


@dataclass
class SettlementRuntime:
    """Shared collaborators plus factories for the request-scoped services."""

    settings: Settings
    session_factory: async_sessionmaker[AsyncSession]
    ledger: LedgerClient
    directory: AccountDirectory
    worker: ConsumptionWorker

    @classmethod
    def build(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: LedgerClient,
        directory: AccountDirectory | None = None,
        worker: ConsumptionWorker | None = None,
    ) -> SettlementRuntime:
        if worker is None:
            worker = ConsumptionWorker(
                session_factory,
                ledger,
                max_retries=settings.consume_max_retries,
                retry_delay_seconds=settings.consume_retry_delay_seconds,
                placeholder_wait_seconds=settings.consume_placeholder_wait_seconds,
            )
        return cls(
            settings=settings,
            session_factory=session_factory,
            ledger=ledger,
            directory=directory or AccountDirectory.from_settings(settings),
            worker=worker,
        )

    def escrow(self) -> EscrowCoordinator:
        return EscrowCoordinator(self.ledger, self.directory)

    def compliance(self) -> ComplianceGate:
        return ComplianceGate(self.session_factory)

    def properties(self) -> PropertyService:
        return PropertyService(self.session_factory, self.ledger, self.worker)

    def proofs(self) -> ProofService:
        return ProofService(
            self.session_factory,
            self.ledger,
            proof_lifetime_days=self.settings.proof_lifetime_days,
        )

    def offers(self) -> OfferService:
        return OfferService(
            self.session_factory,
            self.compliance(),
            self.escrow(),
            offer_lifetime_days=self.settings.offer_lifetime_days,
            prefund_buyer=self.settings.buyer_prefund_on_offer,
        )

    def settlement(self) -> SettlementOrchestrator:
        return SettlementOrchestrator(
            self.session_factory,
            self.ledger,
            self.escrow(),
            self.compliance(),
        )


_runtime: SettlementRuntime | None = None


async def init_runtime(resume: bool = True) -> SettlementRuntime:
    """Build the runtime from settings and resume unfinished note consumption."""
    global _runtime
    settings = get_settings()
    _runtime = SettlementRuntime.build(
        settings,
        get_session_factory(),
        build_ledger_client(settings),
    )
    if resume:
        await _runtime.worker.resume_unfinished()
    logger.info(
        "runtime.initialized",
        simulated_ledger=settings.ledger_simulate,
        accounts=len(_runtime.directory.aliases()),
    )
    return _runtime


def set_runtime(runtime: SettlementRuntime | None) -> None:
    """Install a pre-built runtime (tests and the simulation)."""
    global _runtime
    _runtime = runtime


def get_runtime() -> SettlementRuntime:
    """Return the runtime singleton. Must call init_runtime() first."""
    if _runtime is None:
        raise RuntimeError("Runtime not initialized. Call init_runtime() first.")
    return _runtime


async def close_runtime() -> None:
    """Stop background consumption and close the ledger client."""
    global _runtime
    if _runtime is not None:
        await _runtime.worker.shutdown()
        await _runtime.ledger.aclose()
        logger.info("runtime.closed")
        _runtime = None
