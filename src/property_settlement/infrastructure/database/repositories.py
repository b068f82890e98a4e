"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).

Status changes go through ``compare_and_set``: a single conditional UPDATE
whose WHERE clause carries the expected column values. A rowcount of zero
means another writer got there first; the caller decides whether that is a
conflict or a no-op. No repository ever reads a status and then writes it
back in a separate statement.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select, update

from property_settlement.infrastructure.database.orm_models import (
    Offer,
    OfferEvent,
    Property,
    Proof,
    VerificationHistory,
)

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession

    from property_settlement.domain.enums import EventType


async def _compare_and_set(
    session: AsyncSession,
    model: type[Property] | type[Offer],
    key_column: Any,
    key: str,
    expected: dict[str, Any],
    values: dict[str, Any],
) -> bool:
    """Apply ``values`` only if every column in ``expected`` still matches.

    Bumps ``version`` and ``updated_at`` on success. Returns True when exactly
    one row was updated. Loaded instances are not synchronized; readers use
    ``populate_existing``.
    """
    conditions = [key_column == key]
    for column, value in expected.items():
        attr = getattr(model, column)
        conditions.append(attr.is_(None) if value is None else attr == value)

    stmt = (
        update(model)
        .where(*conditions)
        .values(**values, version=model.version + 1, updated_at=datetime.now(UTC))
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


class PropertyRepository:
    """Data access for properties."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, prop: Property) -> Property:
        """Insert a new property."""
        self._session.add(prop)
        await self._session.flush()
        return prop

    async def get_by_id(self, property_id: str) -> Property | None:
        """Fetch a property by id, refreshing any cached instance."""
        result = await self._session.execute(
            select(Property)
            .where(Property.property_id == property_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_status(self, status: str) -> list[Property]:
        """Fetch all properties with a given listing status."""
        result = await self._session.execute(
            select(Property)
            .where(Property.status == status)
            .order_by(Property.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_by_owner(self, owner_user_identifier: str) -> list[Property]:
        result = await self._session.execute(
            select(Property)
            .where(Property.owner_user_identifier == owner_user_identifier)
            .order_by(Property.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_by_consume_status(self, statuses: Iterable[str]) -> list[Property]:
        """Fetch properties whose note consumption is in any of ``statuses``."""
        result = await self._session.execute(
            select(Property)
            .where(Property.consume_status.in_(list(statuses)))
            .order_by(Property.created_at.asc())
        )
        return list(result.scalars().all())

    async def compare_and_set(
        self,
        property_id: str,
        expected: dict[str, Any],
        **values: Any,
    ) -> bool:
        """Conditionally update a property (call AFTER state machine validation)."""
        return await _compare_and_set(
            self._session, Property, Property.property_id, property_id, expected, values
        )


class OfferRepository:
    """Data access for offers."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, offer: Offer) -> Offer:
        """Insert a new offer."""
        self._session.add(offer)
        await self._session.flush()
        return offer

    async def get_by_id(self, offer_id: str) -> Offer | None:
        """Fetch an offer by id, refreshing any cached instance."""
        result = await self._session.execute(
            select(Offer)
            .where(Offer.offer_id == offer_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_by_property(self, property_id: str) -> list[Offer]:
        """Fetch all offers on a property, newest first."""
        result = await self._session.execute(
            select(Offer)
            .where(Offer.property_id == property_id)
            .order_by(Offer.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_by_buyer(self, buyer_user_identifier: str) -> list[Offer]:
        """Fetch all offers made by a buyer, newest first."""
        result = await self._session.execute(
            select(Offer)
            .where(Offer.buyer_user_identifier == buyer_user_identifier)
            .order_by(Offer.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_expired_pending(self, now: datetime) -> list[Offer]:
        """Fetch pending offers whose expiry has passed."""
        result = await self._session.execute(
            select(Offer)
            .where(Offer.status == "pending", Offer.expires_at <= now)
            .order_by(Offer.expires_at.asc())
        )
        return list(result.scalars().all())

    async def get_completed(self, limit: int = 50) -> list[Offer]:
        """Fetch completed settlements, most recent first."""
        result = await self._session.execute(
            select(Offer)
            .where(Offer.status == "completed")
            .order_by(Offer.completed_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def compare_and_set(
        self,
        offer_id: str,
        expected: dict[str, Any],
        **values: Any,
    ) -> bool:
        """Conditionally update an offer (call AFTER state machine validation)."""
        return await _compare_and_set(
            self._session, Offer, Offer.offer_id, offer_id, expected, values
        )


class ProofRepository:
    """Data access for proofs. Proof rows are never updated."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, proof: Proof) -> Proof:
        self._session.add(proof)
        await self._session.flush()
        return proof

    async def get_by_owner(
        self,
        owner_identifier: str,
        proof_type: str | None = None,
    ) -> list[Proof]:
        """Fetch a party's proofs, newest first, optionally of one type."""
        stmt = select(Proof).where(Proof.owner_identifier == owner_identifier)
        if proof_type is not None:
            stmt = stmt.where(Proof.type == proof_type)
        result = await self._session.execute(stmt.order_by(Proof.created_at.desc()))
        return list(result.scalars().all())


class VerificationHistoryRepository:
    """Data access for the append-only verification audit."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        property_id: str,
        action: str,
        previous_status: str,
        new_status: str,
        performed_by: str,
        notes: str | None = None,
    ) -> VerificationHistory:
        """Append a verification record. This is the ONLY write operation allowed."""
        entry = VerificationHistory(
            property_id=property_id,
            action=action,
            previous_status=previous_status,
            new_status=new_status,
            performed_by=performed_by,
            notes=notes,
        )
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def get_by_property(self, property_id: str) -> list[VerificationHistory]:
        """Fetch a property's verification history, newest first."""
        result = await self._session.execute(
            select(VerificationHistory)
            .where(VerificationHistory.property_id == property_id)
            .order_by(VerificationHistory.created_at.desc())
        )
        return list(result.scalars().all())


class EventRepository:
    """Data access for the append-only offer event log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        offer_id: str,
        event_type: EventType,
        old_status: str | None,
        new_status: str,
        actor: str = "SYSTEM",
        metadata: dict | None = None,
    ) -> OfferEvent:
        """Append a new audit event. This is the ONLY write operation allowed."""
        evt = OfferEvent(
            offer_id=offer_id,
            event_type=event_type.value,
            old_status=old_status,
            new_status=new_status,
            actor=actor,
            metadata_json=metadata,
        )
        self._session.add(evt)
        await self._session.flush()
        return evt

    async def get_by_offer(self, offer_id: str) -> list[OfferEvent]:
        """Fetch all events for an offer in chronological order."""
        result = await self._session.execute(
            select(OfferEvent)
            .where(OfferEvent.offer_id == offer_id)
            .order_by(OfferEvent.created_at.asc())
        )
        return list(result.scalars().all())
