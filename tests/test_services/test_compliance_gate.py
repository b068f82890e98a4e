"""Tests for the ComplianceGate over stored proofs."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from property_settlement.domain.exceptions import ComplianceError
from tests.factories import make_property, make_proof

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from property_settlement.services.compliance_service import ComplianceGate


@pytest.mark.asyncio
class TestComplianceGate:
    async def test_unrestricted_property_needs_no_proofs(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        compliance: ComplianceGate,
    ) -> None:
        prop = await make_property(session_factory)
        result = await compliance.check_eligibility(prop, "user-B")
        assert result.eligible

    async def test_threshold_too_low(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        compliance: ComplianceGate,
    ) -> None:
        prop = await make_property(
            session_factory, requires_accreditation=True, accreditation_threshold=1_000_000
        )
        await make_proof(session_factory, threshold=500_000)

        result = await compliance.check_eligibility(prop, "user-B")

        assert not result.eligible
        assert [m.to_dict() for m in result.missing] == [
            {
                "type": "accreditation",
                "reason": "threshold_too_low",
                "required": 1_000_000,
                "current": 500_000,
            }
        ]

    async def test_other_buyers_proofs_do_not_count(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        compliance: ComplianceGate,
    ) -> None:
        prop = await make_property(
            session_factory, requires_accreditation=True, accreditation_threshold=1_000_000
        )
        await make_proof(session_factory, owner_identifier="user-C", threshold=2_000_000)

        result = await compliance.check_eligibility(prop, "user-B")
        assert result.missing[0].reason == "missing"

    async def test_expiry_is_judged_at_the_given_time(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        compliance: ComplianceGate,
    ) -> None:
        now = datetime.now(UTC)
        prop = await make_property(
            session_factory, requires_accreditation=True, accreditation_threshold=1_000_000
        )
        await make_proof(session_factory, expires_at=now + timedelta(days=1))

        assert (await compliance.check_eligibility(prop, "user-B", now=now)).eligible
        later = await compliance.check_eligibility(prop, "user-B", now=now + timedelta(days=2))
        assert later.missing[0].reason == "expired"

    async def test_require_eligible_raises_with_stage(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        compliance: ComplianceGate,
    ) -> None:
        prop = await make_property(session_factory, requires_jurisdiction=True)

        with pytest.raises(ComplianceError) as exc_info:
            await compliance.require_eligible(prop, "user-B", stage="acceptance")

        assert exc_info.value.stage == "acceptance"
        assert exc_info.value.details["missing"] == [{"type": "jurisdiction", "reason": "missing"}]
        assert exc_info.value.to_dict()["reason"] == "compliance"

    async def test_jurisdiction_proof_must_cover_restricted_list(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        compliance: ComplianceGate,
    ) -> None:
        prop = await make_property(
            session_factory, requires_jurisdiction=True, restricted_countries=["us", "KP"]
        )
        await make_proof(session_factory, proof_type="jurisdiction")

        result = await compliance.check_eligibility(prop, "user-B")

        assert [m.to_dict() for m in result.missing] == [
            {"type": "jurisdiction", "reason": "restricted_list_mismatch", "uncovered": ["US"]}
        ]

        covering = await make_proof(
            session_factory, proof_type="jurisdiction", restricted_countries=["KP", "US"]
        )
        result = await compliance.check_eligibility(prop, "user-B")
        assert result.eligible
        assert result.matched[0].proof_id == str(covering.id)

    async def test_check_is_repeatable(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        compliance: ComplianceGate,
    ) -> None:
        prop = await make_property(
            session_factory, requires_accreditation=True, accreditation_threshold=1_000_000
        )
        proof = await make_proof(session_factory)

        first = await compliance.check_eligibility(prop, "user-B")
        second = await compliance.check_eligibility(prop, "user-B")
        assert first.matched == second.matched
        assert first.matched[0].proof_id == str(proof.id)
