"""SettlementOrchestrator — atomic-intent property settlement.

Settlement of an accepted offer is a fixed sequence:

    1. validate offer / escrow / property state and resolve the release parties
    2. re-check compliance at settlement time
    3. claim the offer (compare-and-swap on ``settlement_claim``)
    4. transfer the property to the buyer          (ledger)
    5. release the escrow to the current owner     (ledger)
    6. complete the offer and mark the property sold (one transaction)

Escrow is never released unless the transfer returned first. A failed
transfer aborts cleanly: the claim is dropped and nothing local changes, so
the operator can retry. A failed release after a successful transfer is the
one unrecoverable case: the ledger already moved the property, so the offer
is flagged for reconciliation, the claim is kept, and the caller gets a
LedgerInconsistencyError. Nothing ever retries that state automatically.

If the ledger work succeeds but the final bookkeeping write fails, the
result reports ``bookkeeping_pending`` instead of failing the call: the
ledger outcome is authoritative and the transfer/release tx ids are already
logged and persisted where possible.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from property_settlement.domain.enums import (
    EscrowStatus,
    EventType,
    OfferStatus,
    PropertyStatus,
)
from property_settlement.domain.exceptions import (
    ComplianceError,
    ConflictError,
    LedgerInconsistencyError,
    NotFoundError,
    OfferNotFoundError,
    PropertyNotFoundError,
    SettlementServiceError,
    StaleWriteError,
    ValidationError,
)
from property_settlement.domain.state_machine import (
    ListingStateMachine,
    OfferStateMachine,
    validate_transition,
)
from property_settlement.infrastructure.database.repositories import (
    EventRepository,
    OfferRepository,
    PropertyRepository,
)
from property_settlement.logging_config import get_logger
from property_settlement.services.consumption_worker import is_ready_for_settlement

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from property_settlement.domain.ledger_protocol import LedgerClient
    from property_settlement.infrastructure.database.orm_models import Offer, Property
    from property_settlement.services.compliance_service import ComplianceGate
    from property_settlement.services.escrow_coordinator import EscrowCoordinator

logger = get_logger(__name__)


@dataclass(frozen=True)
class SettlementResult:
    """Outcome of a settlement that reached the ledger successfully."""

    offer_id: str
    property_id: str
    offer_status: str
    property_status: str
    transfer_tx_id: str
    release_tx_id: str
    new_owner: str
    bookkeeping_pending: bool = False

    def to_dict(self) -> dict:
        return {
            "offer_id": self.offer_id,
            "property_id": self.property_id,
            "offer_status": self.offer_status,
            "property_status": self.property_status,
            "transfer_tx_id": self.transfer_tx_id,
            "release_tx_id": self.release_tx_id,
            "new_owner": self.new_owner,
            "bookkeeping_pending": self.bookkeeping_pending,
        }


class SettlementOrchestrator:
    """Runs the transfer-then-release settlement sequence for accepted offers."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: LedgerClient,
        escrow: EscrowCoordinator,
        compliance: ComplianceGate,
    ) -> None:
        self._session_factory = session_factory
        self._ledger = ledger
        self._escrow = escrow
        self._compliance = compliance

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    async def check_settlement_ready(self, offer_id: str) -> dict:
        """Report every settlement precondition without touching the ledger."""
        offer = await self._get_offer_or_raise(offer_id)
        prop = await self._get_property_or_raise(offer.property_id)

        eligibility = await self._compliance.check_eligibility(prop, offer.buyer_user_identifier)
        try:
            self._escrow.resolve_parties(offer.buyer_account_id, prop.owner_account_id)
            parties_known = True
        except ValidationError:
            parties_known = False
        checks = {
            "offer_accepted": offer.status == OfferStatus.ACCEPTED,
            "escrow_funded": bool(offer.escrow_id) and offer.escrow_status == EscrowStatus.FUNDED,
            "property_not_sold": prop.status != PropertyStatus.SOLD,
            "property_consumed": is_ready_for_settlement(prop),
            "compliance_ok": eligibility.eligible,
            "parties_resolvable": parties_known,
            "not_claimed": offer.settlement_claim is None,
        }
        blockers = [name for name, ok in checks.items() if not ok]
        return {
            "offer_id": offer_id,
            "property_id": prop.property_id,
            "ready": not blockers,
            "checks": checks,
            "blockers": blockers,
            "consume_status": prop.consume_status,
            "missing_proofs": [m.to_dict() for m in eligibility.missing],
        }

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_settlement(self, offer_id: str, actor: str = "SELLER") -> SettlementResult:
        """Settle an accepted offer: transfer the property, then release escrow."""
        offer = await self._get_offer_or_raise(offer_id)
        validate_transition(OfferStateMachine, offer.status, "complete")

        if not offer.escrow_id or offer.escrow_status != EscrowStatus.FUNDED:
            raise ConflictError(
                f"Offer {offer_id} has no funded escrow (escrow status '{offer.escrow_status}')",
                code="ESCROW_NOT_FUNDED",
                details={"offer_id": offer_id, "escrow_status": offer.escrow_status},
            )

        prop = await self._get_property_or_raise(offer.property_id)
        if prop.status == PropertyStatus.SOLD:
            raise ConflictError(
                f"Property {prop.property_id} is already sold",
                code="PROPERTY_ALREADY_SOLD",
                details={"property_id": prop.property_id},
            )
        if not is_ready_for_settlement(prop):
            raise ConflictError(
                f"Property {prop.property_id} is not ready for settlement "
                f"(note consumption '{prop.consume_status}')",
                code="PROPERTY_NOT_CONSUMED",
                details={"property_id": prop.property_id, "consume_status": prop.consume_status},
            )
        validate_transition(ListingStateMachine, prop.status, "sell")
        # The release must not be able to fail on an unknown account after the transfer.
        self._escrow.resolve_parties(offer.buyer_account_id, prop.owner_account_id)

        log = logger.bind(offer_id=offer_id, property_id=prop.property_id, escrow_id=offer.escrow_id)

        try:
            await self._compliance.require_eligible(
                prop, offer.buyer_user_identifier, stage="settlement"
            )
        except ComplianceError as exc:
            await self._record_event(
                offer, EventType.SETTLEMENT_ABORTED, actor, {"reason": exc.code, "missing": exc.details}
            )
            raise

        claim = f"settle:{uuid.uuid4().hex[:12]}"
        async with self._session_factory() as session, session.begin():
            claimed = await OfferRepository(session).compare_and_set(
                offer_id,
                {
                    "status": OfferStatus.ACCEPTED,
                    "escrow_status": EscrowStatus.FUNDED,
                    "settlement_claim": None,
                },
                settlement_claim=claim,
            )
            if claimed:
                await EventRepository(session).record(
                    offer_id=offer_id,
                    event_type=EventType.SETTLEMENT_STARTED,
                    old_status=offer.status,
                    new_status=offer.status,
                    actor=actor,
                    metadata={"claim": claim},
                )
        if not claimed:
            raise ConflictError(
                f"Settlement of offer {offer_id} is already in progress",
                code="SETTLEMENT_IN_PROGRESS",
                details={"offer_id": offer_id},
            )
        log.info("settlement.started", claim=claim)

        # Step 1: property to buyer.
        try:
            transfer_tx = await self._ledger.transfer_property(prop.property_id, offer.buyer_account_id)
        except SettlementServiceError as exc:
            await self._release_claim(offer_id, claim)
            await self._record_event(
                offer, EventType.SETTLEMENT_ABORTED, actor, {"step": "transfer", "error": exc.message}
            )
            log.error("settlement.transfer_failed", error=exc.message)
            raise
        log.info("settlement.property_transferred", tx_id=transfer_tx)
        await self._persist_best_effort(
            offer,
            {"transfer_tx_id": transfer_tx},
            EventType.PROPERTY_TRANSFERRED,
            actor,
            {"tx_id": transfer_tx, "to": offer.buyer_account_id},
        )

        # Step 2: escrow to the current owner. Only reachable after a transfer.
        payee = prop.owner_account_id
        try:
            release_tx = await self._escrow.release(
                offer.escrow_id, offer.buyer_account_id, payee, offer.offer_price
            )
        except SettlementServiceError as exc:
            log.critical(
                "settlement.inconsistent_state",
                transfer_tx_id=transfer_tx,
                error=exc.message,
            )
            await self._persist_best_effort(
                offer,
                {"needs_reconciliation": True},
                EventType.SETTLEMENT_INCONSISTENT,
                actor,
                {"transfer_tx_id": transfer_tx, "error": exc.message},
            )
            raise LedgerInconsistencyError(offer_id, transfer_tx, exc.message) from exc
        log.info("settlement.escrow_released", tx_id=release_tx, payee=payee)

        # Step 3: local bookkeeping.
        now = datetime.now(UTC)
        bookkeeping_pending = False
        try:
            async with self._session_factory() as session, session.begin():
                completed = await OfferRepository(session).compare_and_set(
                    offer_id,
                    {"status": OfferStatus.ACCEPTED, "settlement_claim": claim},
                    status=OfferStatus.COMPLETED,
                    transfer_tx_id=transfer_tx,
                    release_tx_id=release_tx,
                    escrow_status=EscrowStatus.RELEASED,
                    completed_at=now,
                )
                if not completed:
                    raise StaleWriteError("offer", offer_id, OfferStatus.ACCEPTED)
                sold = await PropertyRepository(session).compare_and_set(
                    prop.property_id,
                    {"status": prop.status},
                    status=PropertyStatus.SOLD,
                    owner_account_id=offer.buyer_account_id,
                    owner_user_identifier=offer.buyer_user_identifier,
                    active_offer_id=None,
                    sold_at=now,
                    sold_to=offer.buyer_user_identifier,
                    sold_price=offer.offer_price,
                )
                if not sold:
                    raise StaleWriteError("property", prop.property_id, prop.status)
                events = EventRepository(session)
                await events.record(
                    offer_id=offer_id,
                    event_type=EventType.ESCROW_RELEASED,
                    old_status=OfferStatus.ACCEPTED,
                    new_status=OfferStatus.ACCEPTED,
                    actor=actor,
                    metadata={"tx_id": release_tx, "payee": payee},
                )
                await events.record(
                    offer_id=offer_id,
                    event_type=EventType.SETTLEMENT_COMPLETED,
                    old_status=OfferStatus.ACCEPTED,
                    new_status=OfferStatus.COMPLETED,
                    actor=actor,
                    metadata={"transfer_tx_id": transfer_tx, "release_tx_id": release_tx},
                )
        except (StaleWriteError, SQLAlchemyError) as exc:
            bookkeeping_pending = True
            log.error(
                "settlement.persist_failed",
                transfer_tx_id=transfer_tx,
                release_tx_id=release_tx,
                error=str(exc),
            )

        log.info("settlement.completed", bookkeeping_pending=bookkeeping_pending)
        return SettlementResult(
            offer_id=offer_id,
            property_id=prop.property_id,
            offer_status=OfferStatus.COMPLETED.value,
            property_status=PropertyStatus.SOLD.value,
            transfer_tx_id=transfer_tx,
            release_tx_id=release_tx,
            new_owner=offer.buyer_account_id,
            bookkeeping_pending=bookkeeping_pending,
        )

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_settlement(self, offer_id: str) -> Offer:
        offer = await self._get_offer_or_raise(offer_id)
        if offer.status != OfferStatus.COMPLETED:
            raise NotFoundError("settlement", offer_id)
        return offer

    async def settlement_history(self, limit: int = 50) -> list[Offer]:
        async with self._session_factory() as session:
            return await OfferRepository(session).get_completed(limit)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _release_claim(self, offer_id: str, claim: str) -> None:
        async with self._session_factory() as session, session.begin():
            await OfferRepository(session).compare_and_set(
                offer_id, {"settlement_claim": claim}, settlement_claim=None
            )

    async def _record_event(
        self, offer: Offer, event_type: EventType, actor: str, metadata: dict
    ) -> None:
        async with self._session_factory() as session, session.begin():
            await EventRepository(session).record(
                offer_id=offer.offer_id,
                event_type=event_type,
                old_status=offer.status,
                new_status=offer.status,
                actor=actor,
                metadata=metadata,
            )

    async def _persist_best_effort(
        self,
        offer: Offer,
        values: dict,
        event_type: EventType,
        actor: str,
        metadata: dict,
    ) -> None:
        """Write ledger outcomes mid-sequence; a DB failure here must not stop settlement."""
        try:
            async with self._session_factory() as session, session.begin():
                await OfferRepository(session).compare_and_set(offer.offer_id, {}, **values)
                await EventRepository(session).record(
                    offer_id=offer.offer_id,
                    event_type=event_type,
                    old_status=offer.status,
                    new_status=offer.status,
                    actor=actor,
                    metadata=metadata,
                )
        except SQLAlchemyError as exc:
            logger.error(
                "settlement.persist_failed",
                offer_id=offer.offer_id,
                event_type=event_type.value,
                values=values,
                error=str(exc),
            )

    async def _get_offer_or_raise(self, offer_id: str) -> Offer:
        async with self._session_factory() as session:
            offer = await OfferRepository(session).get_by_id(offer_id)
        if offer is None:
            raise OfferNotFoundError(offer_id)
        return offer

    async def _get_property_or_raise(self, property_id: str) -> Property:
        async with self._session_factory() as session:
            prop = await PropertyRepository(session).get_by_id(property_id)
        if prop is None:
            raise PropertyNotFoundError(property_id)
        return prop
