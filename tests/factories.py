"""Factory helpers for creating test data in a known state."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from property_settlement.domain.enums import (
    ConsumeStatus,
    PropertyStatus,
    VerificationStatus,
)
from property_settlement.infrastructure.database.orm_models import Property, Proof

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from property_settlement.services.offer_service import OfferService

ACCOUNTS = {
    "S": "0x" + "5e" * 20,
    "B": "0x" + "b0" * 20,
    "C": "0x" + "c4" * 20,
}


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


async def make_property(
    session_factory: async_sessionmaker[AsyncSession],
    property_id: str = "P1",
    owner_account_id: str = "S",
    price: int = 100,
    **overrides: Any,
) -> Property:
    """Insert a property that is listed, verified and consumed unless overridden."""
    values: dict[str, Any] = {
        "property_id": property_id,
        "title": f"Test property {property_id}",
        "kind": "residential",
        "price": price,
        "status": PropertyStatus.LISTED,
        "owner_account_id": owner_account_id,
        "owner_user_identifier": f"user-{owner_account_id}",
        "note_id": f"note-{property_id.lower()}",
        "mint_tx_id": f"tx-mint-{property_id.lower()}",
        "consume_status": ConsumeStatus.CONSUMED,
        "consume_retries": 0,
        "requires_accreditation": False,
        "requires_jurisdiction": False,
        "restricted_countries": [],
        "verification_status": VerificationStatus.VERIFIED,
    }
    values.update(overrides)
    prop = Property(**values)
    async with session_factory() as session, session.begin():
        session.add(prop)
    return prop


async def make_proof(
    session_factory: async_sessionmaker[AsyncSession],
    owner_identifier: str = "user-B",
    proof_type: str = "accreditation",
    threshold: int | None = 1_000_000,
    verified: bool = True,
    expires_at: datetime | None = None,
    created_at: datetime | None = None,
    restricted_countries: list[str] | None = None,
) -> Proof:
    now = datetime.now(UTC)
    proof = Proof(
        id=uuid.uuid4(),
        owner_identifier=owner_identifier,
        type=proof_type,
        verified=verified,
        threshold=threshold if proof_type == "accreditation" else None,
        restricted_countries=(
            restricted_countries or ["KP"] if proof_type == "jurisdiction" else None
        ),
        proof_data={"proof": "sim-proof-test"},
        expires_at=expires_at or now + timedelta(days=90),
        created_at=created_at or now,
    )
    async with session_factory() as session, session.begin():
        session.add(proof)
    return proof


async def make_accepted_offer(
    offer_service: OfferService,
    property_id: str = "P1",
    buyer: str = "B",
    price: int = 100,
) -> str:
    """Create and accept an offer from ``buyer``; returns the offer id."""
    offer = await offer_service.create_offer(
        property_id=property_id,
        buyer_account_id=buyer,
        buyer_user_identifier=f"user-{buyer}",
        offer_price=price,
    )
    await offer_service.accept_offer(offer.offer_id, actor="user-S")
    return offer.offer_id
