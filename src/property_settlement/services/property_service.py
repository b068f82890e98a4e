"""Property Service — minting, listing and administrative verification.

Mint calls the ledger first and only then writes the row (draft, consumption
pending), after which the ConsumptionWorker is scheduled in the background.
Listing and verification are plain guarded transitions: validate against the
state machine, compare-and-swap the row, append the audit record.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from property_settlement.domain.enums import (
    ConsumeStatus,
    PropertyStatus,
    VerificationAction,
    VerificationStatus,
)
from property_settlement.domain.exceptions import (
    PropertyNotFoundError,
    StaleWriteError,
    ValidationError,
)
from property_settlement.domain.state_machine import (
    ListingStateMachine,
    VerificationStateMachine,
    validate_transition,
)
from property_settlement.infrastructure.database.orm_models import Property
from property_settlement.infrastructure.database.repositories import (
    PropertyRepository,
    VerificationHistoryRepository,
)
from property_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from property_settlement.domain.ledger_protocol import LedgerClient
    from property_settlement.infrastructure.database.orm_models import VerificationHistory
    from property_settlement.services.consumption_worker import ConsumptionWorker

logger = get_logger(__name__)


def new_property_id() -> str:
    return f"PROP-{uuid.uuid4().hex[:12].upper()}"


class PropertyService:
    """Manages the property lifecycle outside of settlement."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: LedgerClient,
        worker: ConsumptionWorker | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._ledger = ledger
        self._worker = worker

    # ------------------------------------------------------------------
    # Minting
    # ------------------------------------------------------------------

    async def mint_property(
        self,
        owner_account_id: str,
        owner_user_identifier: str,
        title: str,
        price: int,
        kind: str = "residential",
        content_ref: str | None = None,
        requires_accreditation: bool = False,
        accreditation_threshold: int | None = None,
        requires_jurisdiction: bool = False,
        restricted_countries: list[str] | None = None,
        property_id: str | None = None,
    ) -> Property:
        """Mint the asset on the ledger, persist it as a draft, start consumption."""
        if price <= 0:
            raise ValidationError("Price must be positive", field="price")
        if not owner_account_id or not owner_user_identifier:
            raise ValidationError("Owner account and identifier are required", field="owner")
        if requires_accreditation and not accreditation_threshold:
            raise ValidationError(
                "Accreditation threshold is required when accreditation is required",
                field="accreditation_threshold",
            )

        property_id = property_id or new_property_id()
        mint = await self._ledger.mint_asset(
            owner_id=owner_account_id,
            content_ref=content_ref or "",
            kind=kind,
            price=price,
            asset_id=property_id,
        )
        logger.info("property.minted", property_id=property_id, tx_id=mint.tx_id, note_id=mint.note_id)

        prop = Property(
            property_id=property_id,
            title=title,
            kind=kind,
            content_ref=content_ref,
            price=price,
            status=PropertyStatus.DRAFT,
            owner_account_id=owner_account_id,
            owner_user_identifier=owner_user_identifier,
            note_id=mint.note_id,
            mint_tx_id=mint.tx_id,
            consume_status=ConsumeStatus.PENDING,
            consume_retries=0,
            requires_accreditation=requires_accreditation,
            accreditation_threshold=accreditation_threshold,
            requires_jurisdiction=requires_jurisdiction,
            restricted_countries=restricted_countries or [],
            verification_status=VerificationStatus.UNVERIFIED,
        )
        try:
            async with self._session_factory() as session, session.begin():
                await PropertyRepository(session).create(prop)
        except SQLAlchemyError:
            logger.critical(
                "property.persist_failed_after_mint",
                property_id=property_id,
                mint_tx_id=mint.tx_id,
                note_id=mint.note_id,
            )
            raise

        if self._worker is not None:
            self._worker.schedule(property_id)
        return prop

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    async def list_property(
        self,
        property_id: str,
        price: int | None = None,
        requires_accreditation: bool | None = None,
        accreditation_threshold: int | None = None,
        requires_jurisdiction: bool | None = None,
        restricted_countries: list[str] | None = None,
    ) -> Property:
        """Publish a draft or delisted property, optionally updating its terms."""
        prop = await self._get_or_raise(property_id)
        validate_transition(ListingStateMachine, prop.status, "publish")

        values: dict = {"status": PropertyStatus.LISTED}
        if price is not None:
            if price <= 0:
                raise ValidationError("Price must be positive", field="price")
            values["price"] = price
        if requires_accreditation is not None:
            values["requires_accreditation"] = requires_accreditation
        if accreditation_threshold is not None:
            values["accreditation_threshold"] = accreditation_threshold
        if requires_jurisdiction is not None:
            values["requires_jurisdiction"] = requires_jurisdiction
        if restricted_countries is not None:
            values["restricted_countries"] = [c.upper() for c in restricted_countries]

        needs_threshold = values.get("requires_accreditation", prop.requires_accreditation)
        threshold = values.get("accreditation_threshold", prop.accreditation_threshold)
        if needs_threshold and not threshold:
            raise ValidationError(
                "Accreditation threshold is required when accreditation is required",
                field="accreditation_threshold",
            )

        await self._transition(prop, values)
        logger.info("property.listed", property_id=property_id, price=values.get("price", prop.price))
        return await self._get_or_raise(property_id)

    async def delist_property(self, property_id: str) -> Property:
        prop = await self._get_or_raise(property_id)
        validate_transition(ListingStateMachine, prop.status, "delist")
        await self._transition(prop, {"status": PropertyStatus.DELISTED})
        logger.info("property.delisted", property_id=property_id)
        return await self._get_or_raise(property_id)

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    async def submit_for_verification(
        self, property_id: str, performed_by: str, notes: str | None = None
    ) -> Property:
        return await self._verify(property_id, "submit", VerificationAction.SUBMITTED, performed_by, notes)

    async def approve_verification(
        self, property_id: str, performed_by: str, notes: str | None = None
    ) -> Property:
        return await self._verify(property_id, "approve", VerificationAction.APPROVED, performed_by, notes)

    async def reject_verification(
        self, property_id: str, performed_by: str, reason: str
    ) -> Property:
        if not reason or not reason.strip():
            raise ValidationError("Rejection reason is required", field="reason")
        return await self._verify(property_id, "reject", VerificationAction.REJECTED, performed_by, reason)

    async def verification_history(self, property_id: str) -> list[VerificationHistory]:
        await self._get_or_raise(property_id)
        async with self._session_factory() as session:
            return await VerificationHistoryRepository(session).get_by_property(property_id)

    async def _verify(
        self,
        property_id: str,
        event: str,
        action: VerificationAction,
        performed_by: str,
        notes: str | None,
    ) -> Property:
        if not performed_by:
            raise ValidationError("performed_by is required", field="performed_by")

        prop = await self._get_or_raise(property_id)
        previous = prop.verification_status
        new_status = validate_transition(VerificationStateMachine, previous, event)

        values: dict = {"verification_status": new_status}
        if action is VerificationAction.APPROVED:
            values.update(verified_by=performed_by, verified_at=datetime.now(UTC))

        async with self._session_factory() as session, session.begin():
            updated = await PropertyRepository(session).compare_and_set(
                property_id,
                {"verification_status": previous, "version": prop.version},
                **values,
            )
            if not updated:
                raise StaleWriteError("property", property_id, previous)
            await VerificationHistoryRepository(session).record(
                property_id=property_id,
                action=action.value,
                previous_status=previous,
                new_status=new_status,
                performed_by=performed_by,
                notes=notes,
            )

        logger.info(
            "property.verification_changed",
            property_id=property_id,
            action=action.value,
            previous=previous,
            new=new_status,
            by=performed_by,
        )
        return await self._get_or_raise(property_id)

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------

    async def get_property(self, property_id: str) -> Property:
        return await self._get_or_raise(property_id)

    async def list_properties(
        self,
        status: str | None = None,
        owner_user_identifier: str | None = None,
    ) -> list[Property]:
        async with self._session_factory() as session:
            repo = PropertyRepository(session)
            if owner_user_identifier:
                props = await repo.get_by_owner(owner_user_identifier)
                return [p for p in props if status is None or p.status == status]
            return await repo.get_by_status(status or PropertyStatus.LISTED)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _get_or_raise(self, property_id: str) -> Property:
        async with self._session_factory() as session:
            prop = await PropertyRepository(session).get_by_id(property_id)
        if prop is None:
            raise PropertyNotFoundError(property_id)
        return prop

    async def _transition(self, prop: Property, values: dict) -> None:
        async with self._session_factory() as session, session.begin():
            updated = await PropertyRepository(session).compare_and_set(
                prop.property_id,
                {"status": prop.status, "version": prop.version},
                **values,
            )
        if not updated:
            raise StaleWriteError("property", prop.property_id, prop.status)
