"""Tests for the pure compliance evaluation."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from property_settlement.domain.compliance import (
    ComplianceRequirements,
    evaluate_requirements,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@dataclass
class FakeProof:
    type: str
    threshold: int | None = None
    verified: bool = True
    expires_at: datetime = field(default_factory=lambda: NOW + timedelta(days=30))
    created_at: datetime = field(default_factory=lambda: NOW - timedelta(days=1))
    id: str = "proof-1"
    restricted_countries: list[str] | None = None


ACCREDITED = ComplianceRequirements(requires_accreditation=True, accreditation_threshold=1_000_000)


class TestNoRequirements:
    def test_eligible_without_proofs(self) -> None:
        result = evaluate_requirements(ComplianceRequirements(), [], now=NOW)
        assert result.eligible
        assert result.missing == []
        assert result.checked_at == NOW


class TestAccreditation:
    def test_sufficient_proof_matches(self) -> None:
        result = evaluate_requirements(
            ACCREDITED, [FakeProof("accreditation", threshold=2_000_000)], now=NOW
        )
        assert result.eligible
        assert result.matched[0].threshold == 2_000_000

    def test_missing_proof(self) -> None:
        result = evaluate_requirements(ACCREDITED, [], now=NOW)
        assert not result.eligible
        assert result.missing[0].to_dict() == {
            "type": "accreditation",
            "reason": "missing",
            "required": 1_000_000,
        }

    def test_unverified_proof_counts_as_missing(self) -> None:
        proofs = [FakeProof("accreditation", threshold=2_000_000, verified=False)]
        result = evaluate_requirements(ACCREDITED, proofs, now=NOW)
        assert result.missing[0].reason == "missing"

    def test_threshold_too_low_reports_current(self) -> None:
        result = evaluate_requirements(
            ACCREDITED, [FakeProof("accreditation", threshold=500_000)], now=NOW
        )
        assert not result.eligible
        assert result.missing[0].to_dict() == {
            "type": "accreditation",
            "reason": "threshold_too_low",
            "required": 1_000_000,
            "current": 500_000,
        }

    def test_expired_proof(self) -> None:
        expired_at = NOW - timedelta(hours=1)
        proofs = [FakeProof("accreditation", threshold=2_000_000, expires_at=expired_at)]
        result = evaluate_requirements(ACCREDITED, proofs, now=NOW)
        assert result.missing[0].reason == "expired"
        assert result.missing[0].expired_at == expired_at

    def test_sufficient_older_proof_wins_over_weak_newer_one(self) -> None:
        proofs = [
            FakeProof("accreditation", threshold=500_000, created_at=NOW, id="weak"),
            FakeProof(
                "accreditation",
                threshold=1_500_000,
                created_at=NOW - timedelta(days=10),
                id="strong",
            ),
        ]
        result = evaluate_requirements(ACCREDITED, proofs, now=NOW)
        assert result.eligible
        assert result.matched[0].proof_id == "strong"

    def test_most_recent_sufficient_proof_is_matched(self) -> None:
        proofs = [
            FakeProof("accreditation", threshold=1_000_000, created_at=NOW - timedelta(days=5), id="old"),
            FakeProof("accreditation", threshold=1_000_000, created_at=NOW - timedelta(days=1), id="new"),
        ]
        result = evaluate_requirements(ACCREDITED, proofs, now=NOW)
        assert result.matched[0].proof_id == "new"


class TestJurisdiction:
    def test_all_requirements_reported_together(self) -> None:
        requirements = ComplianceRequirements(
            requires_accreditation=True,
            accreditation_threshold=1_000_000,
            requires_jurisdiction=True,
            restricted_countries=("KP",),
        )
        result = evaluate_requirements(requirements, [], now=NOW)
        assert [m.type.value for m in result.missing] == ["accreditation", "jurisdiction"]

    def test_verified_unexpired_jurisdiction_proof_satisfies(self) -> None:
        requirements = ComplianceRequirements(requires_jurisdiction=True)
        result = evaluate_requirements(requirements, [FakeProof("jurisdiction")], now=NOW)
        assert result.eligible
        assert result.matched[0].threshold is None

    def test_proof_must_cover_every_restricted_country(self) -> None:
        requirements = ComplianceRequirements(
            requires_jurisdiction=True, restricted_countries=("KP", "US")
        )
        proof = FakeProof("jurisdiction", restricted_countries=["KP"])

        result = evaluate_requirements(requirements, [proof], now=NOW)

        assert not result.eligible
        assert result.missing[0].to_dict() == {
            "type": "jurisdiction",
            "reason": "restricted_list_mismatch",
            "uncovered": ["US"],
        }

    def test_covering_proof_wins_over_newer_narrow_one(self) -> None:
        requirements = ComplianceRequirements(
            requires_jurisdiction=True, restricted_countries=("KP", "IR")
        )
        proofs = [
            FakeProof(
                "jurisdiction",
                restricted_countries=["kp", "ir", "sy"],
                created_at=NOW - timedelta(days=5),
                id="broad",
            ),
            FakeProof(
                "jurisdiction",
                restricted_countries=["KP"],
                created_at=NOW - timedelta(days=1),
                id="narrow",
            ),
        ]

        result = evaluate_requirements(requirements, proofs, now=NOW)

        assert result.eligible
        assert result.matched[0].proof_id == "broad"


class TestFromProperty:
    def test_reads_property_columns(self) -> None:
        @dataclass
        class Row:
            requires_accreditation: bool = True
            accreditation_threshold: int | None = 750_000
            requires_jurisdiction: bool = False
            restricted_countries: list[str] | None = None

        requirements = ComplianceRequirements.from_property(Row())
        assert requirements.required_types == ["accreditation"]
        assert requirements.accreditation_threshold == 750_000
        assert requirements.restricted_countries == ()
