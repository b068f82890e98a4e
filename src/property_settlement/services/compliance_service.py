"""ComplianceGate — checks a buyer's held proofs against a property's requirements.

Thin I/O wrapper around the pure ``evaluate_requirements``: it loads the
buyer's proofs in its own short session and hands them to the evaluator.
It writes nothing, so offer creation, acceptance and settlement can each
call it without coordination.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from property_settlement.domain.compliance import (
    ComplianceRequirements,
    EligibilityResult,
    evaluate_requirements,
)
from property_settlement.domain.exceptions import ComplianceError
from property_settlement.infrastructure.database.repositories import ProofRepository
from property_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from property_settlement.infrastructure.database.orm_models import Property

logger = get_logger(__name__)


class ComplianceGate:
    """Evaluates whether a buyer may transact on a property."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def check_eligibility(
        self,
        prop: Property,
        buyer_identifier: str,
        now: datetime | None = None,
    ) -> EligibilityResult:
        """Return the eligibility of ``buyer_identifier`` for ``prop``. No side effects."""
        requirements = ComplianceRequirements.from_property(prop)
        if not requirements.required_types:
            return EligibilityResult(eligible=True, checked_at=now or datetime.now(UTC))

        async with self._session_factory() as session:
            proofs = await ProofRepository(session).get_by_owner(buyer_identifier)

        result = evaluate_requirements(requirements, proofs, now=now)
        logger.debug(
            "compliance.checked",
            property_id=prop.property_id,
            buyer=buyer_identifier,
            eligible=result.eligible,
            missing=[m.to_dict() for m in result.missing],
        )
        return result

    async def require_eligible(
        self,
        prop: Property,
        buyer_identifier: str,
        stage: str,
        now: datetime | None = None,
    ) -> EligibilityResult:
        """Like check_eligibility, but raise ComplianceError when ineligible."""
        result = await self.check_eligibility(prop, buyer_identifier, now=now)
        if not result.eligible:
            logger.info(
                "compliance.rejected",
                property_id=prop.property_id,
                buyer=buyer_identifier,
                stage=stage,
                missing=[m.to_dict() for m in result.missing],
            )
            raise ComplianceError(result.missing, stage=stage)
        return result
