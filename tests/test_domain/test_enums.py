"""Tests for domain enumerations."""

from __future__ import annotations

from property_settlement.domain.enums import (
    ConsumeStatus,
    EscrowStatus,
    EventType,
    OfferStatus,
    PropertyStatus,
    ReasonCode,
    RequirementFailure,
)


class TestOfferStatus:
    def test_all_statuses_exist(self) -> None:
        expected = {"pending", "accepted", "rejected", "expired", "completed"}
        assert {s.value for s in OfferStatus} == expected

    def test_status_is_str_enum(self) -> None:
        assert isinstance(OfferStatus.PENDING, str)
        assert OfferStatus.ACCEPTED == "accepted"


class TestPropertyStatus:
    def test_all_statuses_exist(self) -> None:
        expected = {"draft", "listed", "offer_pending", "sold", "delisted"}
        assert {s.value for s in PropertyStatus} == expected


class TestConsumeStatus:
    def test_all_statuses_exist(self) -> None:
        assert {s.value for s in ConsumeStatus} == {"pending", "consuming", "consumed", "failed"}


class TestEscrowStatus:
    def test_all_statuses_exist(self) -> None:
        assert {s.value for s in EscrowStatus} == {"created", "funded", "released", "refunded"}


class TestEventType:
    def test_all_event_types_exist(self) -> None:
        # 6 offer lifecycle + 3 escrow + 6 settlement
        assert len(EventType) == 15

    def test_event_type_is_str_enum(self) -> None:
        assert isinstance(EventType.SETTLEMENT_COMPLETED, str)


class TestFailureCategories:
    def test_requirement_failures(self) -> None:
        assert RequirementFailure.MISSING == "missing"
        assert RequirementFailure.EXPIRED == "expired"
        assert RequirementFailure.THRESHOLD_TOO_LOW == "threshold_too_low"
        assert RequirementFailure.RESTRICTED_LIST_MISMATCH == "restricted_list_mismatch"

    def test_reason_codes(self) -> None:
        assert {r.value for r in ReasonCode} == {
            "validation", "compliance", "conflict", "not_found", "upstream", "inconsistency",
        }
