#!/usr/bin/env python3
"""Property Settlement — End-to-End Simulation.

Runs the offer -> escrow -> settlement workflow against the simulated
ledger, with SellerBot and BuyerBot agents:

    Scenario 1: Happy Path
        - Seller mints, verifies and lists P1 at 100
        - Buyer makes offer O1, seller accepts (escrow created + funded)
        - Settlement transfers P1 to the buyer, releases 100 to the seller

    Scenario 2: Compliance Gate
        - P2 requires accreditation >= 1,000,000
        - Buyer's 500,000 proof is rejected (threshold_too_low)
        - Buyer issues a sufficient proof, the offer goes through

    Scenario 3: Release Fails After Transfer
        - The ledger fails release_escrow once
        - Settlement stops with an inconsistency error; the offer is
          flagged for reconciliation and never retried automatically

    Scenario 4: Note Consumption Exhausted
        - The ledger fails consume_note on every attempt
        - The property ends in consume status 'failed' after 4 attempts,
          settlement is refused, a manual retry recovers it

Usage:
    # SQLite in a temp directory (default, no Docker needed):
    uv run python simulation.py

    # Against the configured DATABASE_URL (e.g. PostgreSQL via Docker):
    docker compose up -d
    uv run python simulation.py --postgres

    # Run a specific scenario:
    uv run python simulation.py --scenario 1
"""

from __future__ import annotations

import argparse
import asyncio
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any

# ---------------------------------------------------------------------------
# Configure structured logging BEFORE importing app modules
# ---------------------------------------------------------------------------
from property_settlement.logging_config import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False)
logger = get_logger("simulation")

ACCOUNTS = {
    "alice": "0x" + "a1" * 20,
    "bob": "0x" + "b0" * 20,
    "carol": "0x" + "c4" * 20,
}

# Module-level state
_engine = None
_runtime = None
_ledger = None


# ---------------------------------------------------------------------------
# Runtime lifecycle helpers
# ---------------------------------------------------------------------------
async def init_runtime(use_postgres: bool = False) -> None:
    """Create the database, the simulated ledger and the shared runtime."""
    global _engine, _runtime, _ledger

    from property_settlement.config import get_settings
    from property_settlement.infrastructure.database.engine import (
        create_engine_for_url,
        make_session_factory,
    )
    from property_settlement.infrastructure.database.orm_models import Base
    from property_settlement.infrastructure.ledger import SimulatedLedgerClient
    from property_settlement.runtime import SettlementRuntime
    from property_settlement.services.consumption_worker import ConsumptionWorker
    from property_settlement.services.escrow_coordinator import AccountDirectory

    settings = get_settings()
    if use_postgres:
        url = settings.database_url
    else:
        db_path = Path(tempfile.mkdtemp(prefix="settlement-sim-")) / "simulation.db"
        url = f"sqlite+aiosqlite:///{db_path}"

    _engine = create_engine_for_url(url)
    async with _engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    session_factory = make_session_factory(_engine)

    _ledger = SimulatedLedgerClient()
    worker = ConsumptionWorker(
        session_factory,
        _ledger,
        max_retries=settings.consume_max_retries,
        retry_delay_seconds=0.0,
        placeholder_wait_seconds=0.0,
    )
    _runtime = SettlementRuntime.build(
        settings,
        session_factory,
        _ledger,
        directory=AccountDirectory(ACCOUNTS),
        worker=worker,
    )
    logger.info("simulation.initialized", database=url.split("://")[0])


async def shutdown_runtime() -> None:
    global _engine, _runtime, _ledger
    if _runtime is not None:
        await _runtime.worker.shutdown()
        await _runtime.ledger.aclose()
        _runtime = None
        _ledger = None
    if _engine is not None:
        await _engine.dispose()
        _engine = None


# ---------------------------------------------------------------------------
# Bot Agents
# ---------------------------------------------------------------------------
@dataclass
class SellerBot:
    """Simulated owner who mints, verifies, lists and settles."""

    account: str = "alice"
    identifier: str = "user-alice"

    async def mint_and_list(
        self,
        title: str,
        price: int,
        property_id: str | None = None,
        **requirements: Any,
    ) -> str:
        """Mint a property, wait for its note to be consumed, verify and list it."""
        props = _runtime.properties()
        prop = await props.mint_property(
            owner_account_id=self.account,
            owner_user_identifier=self.identifier,
            title=title,
            price=price,
            property_id=property_id,
            **requirements,
        )
        await _runtime.worker.drain()
        await props.approve_verification(prop.property_id, performed_by="admin-sim")
        await props.list_property(prop.property_id)
        logger.info("🟢 SELLER: Property listed", property_id=prop.property_id, price=price)
        return prop.property_id

    async def accept(self, offer_id: str) -> None:
        offer = await _runtime.offers().accept_offer(offer_id, actor=self.identifier)
        logger.info("🟢 SELLER: Offer accepted", offer_id=offer_id, escrow_id=offer.escrow_id)

    async def settle(self, offer_id: str) -> dict:
        readiness = await _runtime.settlement().check_settlement_ready(offer_id)
        logger.info("🟢 SELLER: Readiness", ready=readiness["ready"], blockers=readiness["blockers"])
        result = await _runtime.settlement().execute_settlement(offer_id, actor=self.identifier)
        return result.to_dict()


@dataclass
class BuyerBot:
    """Simulated buyer who proves eligibility and makes offers."""

    account: str = "bob"
    identifier: str = "user-bob"

    async def prove_accreditation(self, net_worth: int, threshold: int) -> None:
        proof = await _runtime.proofs().issue_proof(
            self.identifier, "accreditation", net_worth, threshold=threshold
        )
        logger.info("🔵 BUYER: Accreditation proof", threshold=threshold, verified=proof.verified)

    async def offer(self, property_id: str, price: int) -> str:
        offer = await _runtime.offers().create_offer(
            property_id=property_id,
            buyer_account_id=self.account,
            buyer_user_identifier=self.identifier,
            offer_price=price,
        )
        logger.info("🔵 BUYER: Offer made", offer_id=offer.offer_id, price=price)
        return offer.offer_id


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------
def banner(text: str) -> None:
    print("\n" + "=" * 70)
    print(f"  {text}")
    print("=" * 70)


def section(text: str) -> None:
    print(f"\n--- {text} ---")


def print_result(result: dict) -> None:
    for key, value in result.items():
        print(f"  {key:>20}: {value}")


async def print_audit_trail(offer_id: str) -> None:
    section("Audit trail")
    for event in await _runtime.offers().get_events(offer_id):
        print(f"  {event.event_type:<24} {event.old_status or '-':>9} -> {event.new_status:<9} by {event.actor}")


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------
async def scenario_1_happy_path() -> None:
    banner("SCENARIO 1: Happy Path")
    seller, buyer = SellerBot(), BuyerBot()

    property_id = await seller.mint_and_list("Canal Street flat", 100, property_id="P1")
    offer_id = await buyer.offer(property_id, 100)
    await seller.accept(offer_id)

    section("Settlement")
    print_result(await seller.settle(offer_id))
    print(f"  {'seller balance':>20}: {_ledger.balances[ACCOUNTS['alice']]}")
    await print_audit_trail(offer_id)


async def scenario_2_compliance_gate() -> None:
    from property_settlement.domain.exceptions import ComplianceError

    banner("SCENARIO 2: Compliance Gate")
    seller, buyer = SellerBot(), BuyerBot(account="carol", identifier="user-carol")

    property_id = await seller.mint_and_list(
        "Harbour penthouse",
        2_500_000,
        requires_accreditation=True,
        accreditation_threshold=1_000_000,
    )

    await buyer.prove_accreditation(net_worth=600_000, threshold=500_000)
    section("Offer with an insufficient proof")
    try:
        await buyer.offer(property_id, 2_500_000)
    except ComplianceError as exc:
        print_result({"error": exc.code, "missing": exc.details["missing"]})

    section("Offer after a sufficient proof")
    await buyer.prove_accreditation(net_worth=3_000_000, threshold=1_000_000)
    offer_id = await buyer.offer(property_id, 2_500_000)
    await seller.accept(offer_id)
    print_result(await seller.settle(offer_id))


async def scenario_3_release_fails() -> None:
    from property_settlement.domain.exceptions import LedgerInconsistencyError

    banner("SCENARIO 3: Release Fails After Transfer")
    seller, buyer = SellerBot(), BuyerBot()

    property_id = await seller.mint_and_list("Mill Lane cottage", 300)
    offer_id = await buyer.offer(property_id, 300)
    await seller.accept(offer_id)

    _ledger.inject_failure("release_escrow", message="escrow contract paused")
    try:
        await seller.settle(offer_id)
    except LedgerInconsistencyError as exc:
        print_result({"error": exc.code, **exc.details})

    offer = await _runtime.offers().get_offer(offer_id)
    print_result({"offer status": offer.status, "needs_reconciliation": offer.needs_reconciliation})
    await print_audit_trail(offer_id)


async def scenario_4_consumption_exhausted() -> None:
    from property_settlement.domain.exceptions import ConflictError

    banner("SCENARIO 4: Note Consumption Exhausted")
    seller = SellerBot()

    _ledger.inject_failure("consume_note", times=4, message="note not yet committed")
    prop = await _runtime.properties().mint_property(
        owner_account_id=seller.account,
        owner_user_identifier=seller.identifier,
        title="Quarry plot",
        price=50,
        kind="land",
    )
    await _runtime.worker.drain()
    print_result(await _runtime.worker.consumption_status(prop.property_id))

    section("Manual retry")
    await _runtime.worker.request_retry(prop.property_id)
    await _runtime.worker.drain()
    status = await _runtime.worker.consumption_status(prop.property_id)
    print_result({"consume_status": status["consume_status"], "ready": status["ready_for_settlement"]})

    try:
        await _runtime.worker.request_retry(prop.property_id)
    except ConflictError as exc:
        print_result({"second retry": exc.code})


SCENARIOS = {
    1: scenario_1_happy_path,
    2: scenario_2_compliance_gate,
    3: scenario_3_release_fails,
    4: scenario_4_consumption_exhausted,
}


async def run_all(use_postgres: bool = False) -> None:
    await init_runtime(use_postgres=use_postgres)
    try:
        print("\n" + "🚀" * 35)
        print("  PROPERTY SETTLEMENT — END-TO-END SIMULATION")
        print(f"  Database: {'PostgreSQL' if use_postgres else 'SQLite (temp file)'}")
        print("🚀" * 35 + "\n")

        for scenario in SCENARIOS.values():
            await scenario()

        print("\n" + "=" * 70)
        print("  ✅ ALL SCENARIOS COMPLETED")
        print("=" * 70 + "\n")
    finally:
        await shutdown_runtime()


async def run_scenario(num: int, use_postgres: bool = False) -> None:
    if num not in SCENARIOS:
        print(f"Unknown scenario {num}. Available: {', '.join(map(str, SCENARIOS))}")
        return
    await init_runtime(use_postgres=use_postgres)
    try:
        await SCENARIOS[num]()
    finally:
        await shutdown_runtime()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Property Settlement Simulation")
    parser.add_argument(
        "--scenario",
        type=int,
        default=0,
        help="Run a specific scenario (1-4). Default: run all.",
    )
    parser.add_argument(
        "--postgres",
        action="store_true",
        help="Use the configured DATABASE_URL instead of a temporary SQLite file.",
    )
    args = parser.parse_args()

    if args.scenario == 0:
        asyncio.run(run_all(use_postgres=args.postgres))
    else:
        asyncio.run(run_scenario(args.scenario, use_postgres=args.postgres))
