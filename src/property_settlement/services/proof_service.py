"""Proof Service — issues ZK attestations through the ledger's prover.

A proof row is immutable: issuing again creates a new row with a fresh
expiry, and the compliance gate always prefers the most recent one.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from property_settlement.domain.enums import ProofType
from property_settlement.domain.exceptions import ValidationError
from property_settlement.infrastructure.database.orm_models import Proof
from property_settlement.infrastructure.database.repositories import ProofRepository
from property_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from property_settlement.domain.ledger_protocol import LedgerClient

logger = get_logger(__name__)


class ProofService:
    """Generates, verifies and stores proofs."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: LedgerClient,
        proof_lifetime_days: int = 90,
    ) -> None:
        self._session_factory = session_factory
        self._ledger = ledger
        self._lifetime = timedelta(days=proof_lifetime_days)

    async def issue_proof(
        self,
        owner_identifier: str,
        kind: str,
        private_input: int | str,
        threshold: int | None = None,
        restricted_countries: list[str] | None = None,
    ) -> Proof:
        """Generate a proof, verify it, and store the outcome as a new row."""
        try:
            proof_type = ProofType(kind)
        except ValueError:
            raise ValidationError(f"Unknown proof type '{kind}'", field="kind") from None
        if not owner_identifier:
            raise ValidationError("Owner identifier is required", field="owner_identifier")
        if proof_type is ProofType.ACCREDITATION and (threshold is None or threshold <= 0):
            raise ValidationError("Accreditation proofs need a positive threshold", field="threshold")
        if proof_type is ProofType.JURISDICTION and not restricted_countries:
            raise ValidationError(
                "Jurisdiction proofs need a restricted country list", field="restricted_countries"
            )

        countries = [c.upper() for c in restricted_countries or []]
        generated = await self._ledger.generate_proof(
            proof_type.value,
            private_input,
            public_threshold=threshold,
            restricted_countries=countries or None,
        )
        verified = await self._ledger.verify_proof(generated)

        now = datetime.now(UTC)
        proof = Proof(
            owner_identifier=owner_identifier,
            type=proof_type.value,
            verified=verified,
            threshold=threshold if proof_type is ProofType.ACCREDITATION else None,
            restricted_countries=countries or None,
            proof_data=generated.to_dict(),
            expires_at=now + self._lifetime,
            created_at=now,
        )
        async with self._session_factory() as session, session.begin():
            await ProofRepository(session).create(proof)

        logger.info(
            "proof.issued",
            proof_id=str(proof.id),
            owner=owner_identifier,
            type=proof_type.value,
            verified=verified,
        )
        return proof

    async def list_proofs(self, owner_identifier: str, kind: str | None = None) -> list[Proof]:
        async with self._session_factory() as session:
            return await ProofRepository(session).get_by_owner(owner_identifier, kind)
