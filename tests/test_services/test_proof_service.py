"""Tests for ProofService."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from property_settlement.domain.exceptions import ValidationError

if TYPE_CHECKING:
    from property_settlement.infrastructure.ledger.simulated import SimulatedLedgerClient
    from property_settlement.services.proof_service import ProofService


@pytest.mark.asyncio
class TestIssueProof:
    async def test_accreditation_proof_is_stored_verified(
        self,
        proof_service: ProofService,
        ledger: SimulatedLedgerClient,
    ) -> None:
        proof = await proof_service.issue_proof(
            "user-B", "accreditation", 2_000_000, threshold=1_000_000
        )

        assert proof.verified is True
        assert proof.threshold == 1_000_000
        assert proof.proof_data["proof"].startswith("sim-proof-")
        assert proof.expires_at - datetime.now(UTC) > timedelta(days=89)
        assert ledger.operations() == ["generate_proof", "verify_proof"]

    async def test_jurisdiction_countries_uppercased(self, proof_service: ProofService) -> None:
        proof = await proof_service.issue_proof(
            "user-B", "jurisdiction", "gb", restricted_countries=["kp", "ir"]
        )
        assert proof.restricted_countries == ["KP", "IR"]
        assert proof.threshold is None

    async def test_net_worth_below_threshold_is_refused(
        self, proof_service: ProofService
    ) -> None:
        with pytest.raises(ValidationError):
            await proof_service.issue_proof("user-B", "accreditation", 500, threshold=1_000)
        assert await proof_service.list_proofs("user-B") == []

    @pytest.mark.parametrize(
        ("kind", "kwargs", "field"),
        [
            ("citizenship", {}, "kind"),
            ("accreditation", {}, "threshold"),
            ("jurisdiction", {}, "restricted_countries"),
        ],
    )
    async def test_input_validation(
        self,
        proof_service: ProofService,
        ledger: SimulatedLedgerClient,
        kind: str,
        kwargs: dict,
        field: str,
    ) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await proof_service.issue_proof("user-B", kind, 1, **kwargs)
        assert exc_info.value.field == field
        assert ledger.calls == []

    async def test_reissue_adds_a_new_row(self, proof_service: ProofService) -> None:
        first = await proof_service.issue_proof("user-B", "accreditation", 900, threshold=500)
        second = await proof_service.issue_proof("user-B", "accreditation", 900, threshold=800)

        proofs = await proof_service.list_proofs("user-B", "accreditation")

        assert {p.id for p in proofs} == {first.id, second.id}
        assert await proof_service.list_proofs("user-B", "jurisdiction") == []
