"""Offer Service — the offer lifecycle up to (but not including) settlement.

    create  -> compliance gate, persist pending offer, pre-fund the buyer
    accept  -> expiry check, compliance re-check, funding retry, claim the
               property, create + fund escrow, pending -> accepted
    reject  -> pending -> rejected
    expire  -> pending -> expired (sweep, or lazily on acceptance)
    refund  -> operator action on an accepted, unsettled offer with a funded escrow

Transactions are short and per phase. No transaction is held open while a
ledger call is in flight; every status write is a compare-and-swap, so a
lost race surfaces as a ConflictError instead of a silent overwrite.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from property_settlement.domain.enums import (
    EscrowStatus,
    EventType,
    OfferStatus,
    PropertyStatus,
    VerificationStatus,
)
from property_settlement.domain.exceptions import (
    ConflictError,
    FundingError,
    OfferNotFoundError,
    PropertyNotFoundError,
    StaleWriteError,
    UpstreamError,
    ValidationError,
)
from property_settlement.domain.state_machine import (
    EscrowStateMachine,
    ListingStateMachine,
    OfferStateMachine,
    validate_transition,
)
from property_settlement.infrastructure.database.orm_models import Offer
from property_settlement.infrastructure.database.repositories import (
    EventRepository,
    OfferRepository,
    PropertyRepository,
)
from property_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from property_settlement.domain.compliance import EligibilityResult
    from property_settlement.infrastructure.database.orm_models import OfferEvent, Property
    from property_settlement.services.compliance_service import ComplianceGate
    from property_settlement.services.escrow_coordinator import EscrowCoordinator

logger = get_logger(__name__)

OFFERABLE_STATUSES = (PropertyStatus.LISTED, PropertyStatus.OFFER_PENDING)


def new_offer_id() -> str:
    return f"offer-{uuid.uuid4().hex[:12]}"


class OfferService:
    """Manages offers, their compliance gating and their escrow."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        compliance: ComplianceGate,
        escrow: EscrowCoordinator,
        offer_lifetime_days: int = 7,
        prefund_buyer: bool = True,
    ) -> None:
        self._session_factory = session_factory
        self._compliance = compliance
        self._escrow = escrow
        self._lifetime = timedelta(days=offer_lifetime_days)
        self._prefund_buyer = prefund_buyer

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_offer(
        self,
        property_id: str,
        buyer_account_id: str,
        buyer_user_identifier: str,
        offer_price: int,
        now: datetime | None = None,
    ) -> Offer:
        """Create a pending offer after the buyer passes the compliance gate."""
        if offer_price <= 0:
            raise ValidationError("Offer price must be positive", field="offer_price")
        if not buyer_account_id or not buyer_user_identifier:
            raise ValidationError("Buyer account and identifier are required", field="buyer")

        now = now or datetime.now(UTC)
        prop = await self._get_property_or_raise(property_id)

        if prop.verification_status != VerificationStatus.VERIFIED:
            raise ConflictError(
                f"Property {property_id} is not verified "
                f"(verification status '{prop.verification_status}')",
                code="PROPERTY_NOT_VERIFIED",
                details={"property_id": property_id, "verification_status": prop.verification_status},
            )
        if prop.status not in OFFERABLE_STATUSES:
            raise ConflictError(
                f"Property {property_id} is not accepting offers (status '{prop.status}')",
                code="PROPERTY_NOT_LISTED",
                details={"property_id": property_id, "status": prop.status},
            )
        if buyer_user_identifier == prop.owner_user_identifier:
            raise ValidationError("Owners cannot make offers on their own property", field="buyer")

        eligibility = await self._compliance.require_eligible(
            prop, buyer_user_identifier, stage="offer", now=now
        )

        offer = Offer(
            offer_id=new_offer_id(),
            property_id=property_id,
            buyer_account_id=buyer_account_id,
            buyer_user_identifier=buyer_user_identifier,
            seller_account_id=prop.owner_account_id,
            offer_price=offer_price,
            status=OfferStatus.PENDING,
            expires_at=now + self._lifetime,
            verified_proofs=[m.to_dict() for m in eligibility.matched],
        )
        async with self._session_factory() as session, session.begin():
            await OfferRepository(session).create(offer)
            await EventRepository(session).record(
                offer_id=offer.offer_id,
                event_type=EventType.OFFER_CREATED,
                old_status=None,
                new_status=OfferStatus.PENDING,
                actor=buyer_user_identifier,
                metadata={"offer_price": offer_price, "property_id": property_id},
            )
        logger.info(
            "offer.created",
            offer_id=offer.offer_id,
            property_id=property_id,
            buyer=buyer_user_identifier,
            price=offer_price,
        )

        if self._prefund_buyer:
            await self._prefund(offer, retried=False)
        return await self._get_offer_or_raise(offer.offer_id)

    async def _prefund(self, offer: Offer, retried: bool) -> bool:
        """Send the offer amount to the buyer and record the outcome. Never raises UpstreamError."""
        try:
            tx_id = await self._escrow.prefund_buyer(offer.buyer_account_id, offer.offer_price)
        except UpstreamError as exc:
            async with self._session_factory() as session, session.begin():
                await OfferRepository(session).compare_and_set(
                    offer.offer_id,
                    {},
                    buyer_funding_failed=True,
                    buyer_funding_error=exc.message,
                    buyer_funding_retried=retried,
                )
                await EventRepository(session).record(
                    offer_id=offer.offer_id,
                    event_type=EventType.BUYER_PREFUND_FAILED,
                    old_status=offer.status,
                    new_status=offer.status,
                    metadata={"error": exc.message, "retried": retried},
                )
            logger.warning(
                "offer.buyer_prefund_failed",
                offer_id=offer.offer_id,
                retried=retried,
                error=exc.message,
            )
            return False

        async with self._session_factory() as session, session.begin():
            await OfferRepository(session).compare_and_set(
                offer.offer_id,
                {},
                buyer_funding_tx_id=tx_id,
                buyer_funding_failed=False,
                buyer_funding_error=None,
                buyer_funding_retried=retried,
            )
            await EventRepository(session).record(
                offer_id=offer.offer_id,
                event_type=EventType.BUYER_PREFUNDED,
                old_status=offer.status,
                new_status=offer.status,
                metadata={"tx_id": tx_id, "retried": retried},
            )
        return True

    # ------------------------------------------------------------------
    # Acceptance
    # ------------------------------------------------------------------

    async def accept_offer(
        self,
        offer_id: str,
        actor: str = "SELLER",
        now: datetime | None = None,
    ) -> Offer:
        """Accept a pending offer and lock the buyer's funds in a new escrow."""
        now = now or datetime.now(UTC)
        offer = await self._get_offer_or_raise(offer_id)
        validate_transition(OfferStateMachine, offer.status, "accept")

        if offer.expires_at <= now:
            await self._expire(offer, actor="SYSTEM")
            raise ConflictError(
                f"Offer {offer_id} expired at {offer.expires_at.isoformat()}",
                code="OFFER_EXPIRED",
                details={"offer_id": offer_id, "expires_at": offer.expires_at.isoformat()},
            )

        prop = await self._get_property_or_raise(offer.property_id)
        if prop.verification_status != VerificationStatus.VERIFIED:
            raise ConflictError(
                f"Property {prop.property_id} is no longer verified",
                code="PROPERTY_NOT_VERIFIED",
                details={"property_id": prop.property_id},
            )
        validate_transition(ListingStateMachine, prop.status, "lock_for_offer")

        # Proofs may have expired since the offer was created.
        eligibility = await self._compliance.require_eligible(
            prop, offer.buyer_user_identifier, stage="acceptance", now=now
        )

        if self._prefund_buyer and offer.buyer_funding_failed and not offer.buyer_funding_tx_id:
            logger.info("offer.buyer_prefund_retry", offer_id=offer_id)
            if not await self._prefund(offer, retried=True):
                refreshed = await self._get_offer_or_raise(offer_id)
                raise FundingError(offer_id, refreshed.buyer_funding_error or "unknown error")

        # Claim the property so only one offer per property can reach escrow.
        async with self._session_factory() as session, session.begin():
            claimed = await PropertyRepository(session).compare_and_set(
                prop.property_id,
                {"status": PropertyStatus.LISTED, "active_offer_id": None},
                status=PropertyStatus.OFFER_PENDING,
                active_offer_id=offer_id,
            )
        if not claimed:
            raise ConflictError(
                f"Property {prop.property_id} already has an accepted offer",
                code="PROPERTY_LOCKED",
                details={"property_id": prop.property_id},
            )

        try:
            accepted = await self._open_escrow_and_accept(offer, prop, eligibility, actor, now)
        except Exception:
            await self._unlock_property(prop.property_id, offer_id)
            raise

        logger.info(
            "offer.accepted",
            offer_id=offer_id,
            property_id=prop.property_id,
            escrow_id=accepted.escrow_id,
        )
        return accepted

    async def _open_escrow_and_accept(
        self,
        offer: Offer,
        prop: Property,
        eligibility: EligibilityResult,
        actor: str,
        now: datetime,
    ) -> Offer:
        seller = prop.owner_account_id

        # Reuse an escrow left unfunded by an earlier failed attempt.
        if offer.escrow_id and offer.escrow_status == EscrowStatus.CREATED:
            escrow_id = offer.escrow_id
        else:
            account = await self._escrow.create(offer.buyer_account_id, seller, offer.offer_price)
            escrow_id = account.escrow_account_id
            async with self._session_factory() as session, session.begin():
                await OfferRepository(session).compare_and_set(
                    offer.offer_id,
                    {"status": OfferStatus.PENDING},
                    escrow_id=escrow_id,
                    escrow_status=EscrowStatus.CREATED,
                )
                await EventRepository(session).record(
                    offer_id=offer.offer_id,
                    event_type=EventType.ESCROW_CREATED,
                    old_status=OfferStatus.PENDING,
                    new_status=OfferStatus.PENDING,
                    actor=actor,
                    metadata={"escrow_id": escrow_id},
                )

        validate_transition(EscrowStateMachine, EscrowStatus.CREATED, "fund")
        funding_tx = await self._escrow.fund(escrow_id, offer.buyer_account_id, seller, offer.offer_price)

        async with self._session_factory() as session, session.begin():
            won = await OfferRepository(session).compare_and_set(
                offer.offer_id,
                {"status": OfferStatus.PENDING, "escrow_id": escrow_id},
                status=OfferStatus.ACCEPTED,
                escrow_status=EscrowStatus.FUNDED,
                escrow_funding_tx_id=funding_tx,
                verified_proofs=[m.to_dict() for m in eligibility.matched],
                accepted_at=now,
            )
            if won:
                events = EventRepository(session)
                await events.record(
                    offer_id=offer.offer_id,
                    event_type=EventType.ESCROW_FUNDED,
                    old_status=OfferStatus.PENDING,
                    new_status=OfferStatus.PENDING,
                    actor=actor,
                    metadata={"escrow_id": escrow_id, "tx_id": funding_tx},
                )
                await events.record(
                    offer_id=offer.offer_id,
                    event_type=EventType.OFFER_ACCEPTED,
                    old_status=OfferStatus.PENDING,
                    new_status=OfferStatus.ACCEPTED,
                    actor=actor,
                    metadata={"escrow_id": escrow_id},
                )

        if not won:
            # Someone rejected or expired the offer while we were funding.
            logger.warning("offer.accept_race_lost", offer_id=offer.offer_id, escrow_id=escrow_id)
            refund_tx = await self._escrow.refund(
                escrow_id, offer.buyer_account_id, seller, offer.offer_price
            )
            async with self._session_factory() as session, session.begin():
                await OfferRepository(session).compare_and_set(
                    offer.offer_id,
                    {"escrow_id": escrow_id},
                    escrow_status=EscrowStatus.REFUNDED,
                    escrow_refund_tx_id=refund_tx,
                )
            raise StaleWriteError("offer", offer.offer_id, OfferStatus.PENDING)

        return await self._get_offer_or_raise(offer.offer_id)

    async def _unlock_property(self, property_id: str, offer_id: str) -> None:
        async with self._session_factory() as session, session.begin():
            await PropertyRepository(session).compare_and_set(
                property_id,
                {"status": PropertyStatus.OFFER_PENDING, "active_offer_id": offer_id},
                status=PropertyStatus.LISTED,
                active_offer_id=None,
            )

    # ------------------------------------------------------------------
    # Rejection & expiry
    # ------------------------------------------------------------------

    async def reject_offer(self, offer_id: str, reason: str | None = None, actor: str = "SELLER") -> Offer:
        offer = await self._get_offer_or_raise(offer_id)
        new_status = validate_transition(OfferStateMachine, offer.status, "reject")

        async with self._session_factory() as session, session.begin():
            updated = await OfferRepository(session).compare_and_set(
                offer_id,
                {"status": OfferStatus.PENDING},
                status=new_status,
                rejection_reason=reason,
                rejected_at=datetime.now(UTC),
            )
            if not updated:
                raise StaleWriteError("offer", offer_id, OfferStatus.PENDING)
            await EventRepository(session).record(
                offer_id=offer_id,
                event_type=EventType.OFFER_REJECTED,
                old_status=OfferStatus.PENDING,
                new_status=new_status,
                actor=actor,
                metadata={"reason": reason},
            )

        logger.info("offer.rejected", offer_id=offer_id, reason=reason)
        return await self._get_offer_or_raise(offer_id)

    async def expire_stale_offers(self, now: datetime | None = None) -> list[str]:
        """Mark every pending offer past its expiry as expired."""
        now = now or datetime.now(UTC)
        async with self._session_factory() as session:
            stale = await OfferRepository(session).get_expired_pending(now)

        expired = []
        for offer in stale:
            if await self._expire(offer, actor="SYSTEM"):
                expired.append(offer.offer_id)
        if expired:
            logger.info("offer.expired_sweep", count=len(expired))
        return expired

    async def _expire(self, offer: Offer, actor: str) -> bool:
        new_status = validate_transition(OfferStateMachine, offer.status, "expire")
        async with self._session_factory() as session, session.begin():
            updated = await OfferRepository(session).compare_and_set(
                offer.offer_id,
                {"status": OfferStatus.PENDING},
                status=new_status,
            )
            if updated:
                await EventRepository(session).record(
                    offer_id=offer.offer_id,
                    event_type=EventType.OFFER_EXPIRED,
                    old_status=OfferStatus.PENDING,
                    new_status=new_status,
                    actor=actor,
                    metadata={"expires_at": offer.expires_at.isoformat()},
                )
        if updated:
            logger.info("offer.expired", offer_id=offer.offer_id)
        return updated

    # ------------------------------------------------------------------
    # Escrow refund (operator)
    # ------------------------------------------------------------------

    async def refund_escrow(self, offer_id: str, actor: str, reason: str | None = None) -> Offer:
        """Return a funded escrow to the buyer and relist the property.

        Only for accepted offers that have not started settlement. The offer
        keeps its ``accepted`` status; the escrow status records the refund.
        """
        offer = await self._get_offer_or_raise(offer_id)
        if offer.status != OfferStatus.ACCEPTED or not offer.escrow_id:
            raise ConflictError(
                f"Offer {offer_id} has no accepted escrow to refund (status '{offer.status}')",
                code="NO_REFUNDABLE_ESCROW",
                details={"offer_id": offer_id, "status": offer.status},
            )
        validate_transition(EscrowStateMachine, offer.escrow_status or EscrowStatus.CREATED, "refund")

        claim = f"refund:{uuid.uuid4().hex[:12]}"
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
        if not claimed:
            raise ConflictError(
                f"Offer {offer_id} is being settled or refunded",
                code="SETTLEMENT_IN_PROGRESS",
                details={"offer_id": offer_id},
            )

        try:
            refund_tx = await self._escrow.refund(
                offer.escrow_id, offer.buyer_account_id, offer.seller_account_id, offer.offer_price
            )
        except UpstreamError:
            async with self._session_factory() as session, session.begin():
                await OfferRepository(session).compare_and_set(
                    offer_id, {"settlement_claim": claim}, settlement_claim=None
                )
            raise

        async with self._session_factory() as session, session.begin():
            await OfferRepository(session).compare_and_set(
                offer_id,
                {"settlement_claim": claim},
                escrow_status=EscrowStatus.REFUNDED,
                escrow_refund_tx_id=refund_tx,
            )
            await EventRepository(session).record(
                offer_id=offer_id,
                event_type=EventType.ESCROW_REFUNDED,
                old_status=offer.status,
                new_status=offer.status,
                actor=actor,
                metadata={"escrow_id": offer.escrow_id, "tx_id": refund_tx, "reason": reason},
            )
        await self._unlock_property(offer.property_id, offer_id)

        logger.info("offer.escrow_refunded", offer_id=offer_id, tx_id=refund_tx, by=actor)
        return await self._get_offer_or_raise(offer_id)

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_offer(self, offer_id: str) -> Offer:
        return await self._get_offer_or_raise(offer_id)

    async def list_offers_for_property(self, property_id: str) -> list[Offer]:
        async with self._session_factory() as session:
            return await OfferRepository(session).get_by_property(property_id)

    async def list_offers_for_buyer(self, buyer_user_identifier: str) -> list[Offer]:
        async with self._session_factory() as session:
            return await OfferRepository(session).get_by_buyer(buyer_user_identifier)

    async def get_status(self, offer_id: str) -> dict:
        """Offer status with the events allowed from it."""
        offer = await self._get_offer_or_raise(offer_id)
        sm = OfferStateMachine(current_status=offer.status)
        return {
            "offer_id": offer.offer_id,
            "status": offer.status,
            "escrow_id": offer.escrow_id,
            "escrow_status": offer.escrow_status,
            "expires_at": offer.expires_at,
            "needs_reconciliation": offer.needs_reconciliation,
            "allowed_events": sm.get_allowed_events(),
        }

    async def get_events(self, offer_id: str) -> list[OfferEvent]:
        """Get audit trail."""
        await self._get_offer_or_raise(offer_id)
        async with self._session_factory() as session:
            return await EventRepository(session).get_by_offer(offer_id)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

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
