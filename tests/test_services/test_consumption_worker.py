"""Tests for the background note ConsumptionWorker."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from property_settlement.domain.enums import ConsumeStatus
from property_settlement.domain.exceptions import (
    ConflictError,
    InvalidStateTransitionError,
    ValidationError,
)
from property_settlement.infrastructure.ledger.simulated import placeholder_note_id
from property_settlement.services.consumption_worker import (
    ConsumptionWorker,
    is_placeholder_note_id,
)
from tests.factories import make_property

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from property_settlement.infrastructure.ledger.simulated import SimulatedLedgerClient
    from property_settlement.services.property_service import PropertyService
    from tests.factories import RecordingSleep


async def _mint(property_service: PropertyService, property_id: str = "P1") -> str:
    prop = await property_service.mint_property(
        owner_account_id="S",
        owner_user_identifier="user-S",
        title="Canal Street flat",
        price=100,
        property_id=property_id,
    )
    return prop.property_id


class TestPlaceholderDetection:
    def test_hex_encoded_placeholder(self) -> None:
        assert is_placeholder_note_id(placeholder_note_id("P1"))

    @pytest.mark.parametrize("note_id", [None, "", "note-abc", "0x6e6f74zz", "0xdeadbeef"])
    def test_real_or_malformed_ids(self, note_id: str | None) -> None:
        assert not is_placeholder_note_id(note_id)


@pytest.mark.asyncio
class TestConsumption:
    async def test_minted_note_is_consumed(
        self,
        property_service: PropertyService,
        worker: ConsumptionWorker,
        ledger: SimulatedLedgerClient,
        sleeper: RecordingSleep,
    ) -> None:
        property_id = await _mint(property_service)
        await worker.drain()

        status = await worker.consumption_status(property_id)
        assert status["consume_status"] == "consumed"
        assert status["consume_retries"] == 0
        assert status["consume_tx_id"].startswith("tx-consume_note-")
        assert status["ready_for_settlement"] is True
        assert status["can_retry"] is False
        assert ledger.consumable_notes["S"] == []
        assert sleeper.delays == []

    async def test_placeholder_note_is_resolved_after_waiting(
        self,
        property_service: PropertyService,
        worker: ConsumptionWorker,
        ledger: SimulatedLedgerClient,
        sleeper: RecordingSleep,
    ) -> None:
        ledger.placeholder_notes = True
        property_id = await _mint(property_service)
        real_note = ledger.consumable_notes["S"][-1]

        await worker.drain()

        status = await worker.consumption_status(property_id)
        assert status["consume_status"] == "consumed"
        assert status["note_id"] == real_note
        assert sleeper.delays == [120]
        assert ledger.calls_to("consume_note")[0].args["note_id"] == real_note

    async def test_retries_then_fails_and_stays_failed(
        self,
        property_service: PropertyService,
        worker: ConsumptionWorker,
        ledger: SimulatedLedgerClient,
        sleeper: RecordingSleep,
    ) -> None:
        ledger.inject_failure("consume_note", times=4, message="note not committed")
        property_id = await _mint(property_service)

        await worker.drain()

        status = await worker.consumption_status(property_id)
        assert status["consume_status"] == "failed"
        assert status["consume_retries"] == 3
        assert status["consume_error"] == "note not committed"
        assert status["ready_for_settlement"] is False
        assert status["can_retry"] is True
        assert len(ledger.calls_to("consume_note")) == 4
        assert sleeper.delays == [60, 60, 60]

        # A stray schedule must not revive a failed row.
        worker.schedule(property_id)
        await worker.drain()
        assert (await worker.consumption_status(property_id))["consume_status"] == "failed"
        assert len(ledger.calls_to("consume_note")) == 4

    async def test_manual_retry_after_failure(
        self,
        property_service: PropertyService,
        worker: ConsumptionWorker,
        ledger: SimulatedLedgerClient,
    ) -> None:
        ledger.inject_failure("consume_note", times=4)
        property_id = await _mint(property_service)
        await worker.drain()

        await worker.request_retry(property_id)
        await worker.drain()

        status = await worker.consumption_status(property_id)
        assert status["consume_status"] == "consumed"
        assert status["consume_retries"] == 0
        assert status["consume_error"] is None

    async def test_manual_retry_refused_once_consumed(
        self,
        property_service: PropertyService,
        worker: ConsumptionWorker,
    ) -> None:
        property_id = await _mint(property_service)
        await worker.drain()

        with pytest.raises(InvalidStateTransitionError):
            await worker.request_retry(property_id)

    async def test_rejected_request_fails_without_retrying(
        self,
        property_service: PropertyService,
        worker: ConsumptionWorker,
        ledger: SimulatedLedgerClient,
        sleeper: RecordingSleep,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        async def reject(note_id: str, account_id: str) -> str:
            raise ValidationError("note does not belong to account", field="note_id")

        original = ledger.consume_note
        monkeypatch.setattr(ledger, "consume_note", reject)
        property_id = await _mint(property_service, "P9")
        await worker.drain()

        status = await worker.consumption_status(property_id)
        assert status["consume_status"] == "failed"
        assert status["consume_retries"] == 0
        assert status["consume_error"] == "note does not belong to account"
        assert status["in_flight"] is False
        assert status["can_retry"] is True
        assert sleeper.delays == []

        monkeypatch.setattr(ledger, "consume_note", original)
        await worker.request_retry(property_id)
        await worker.drain()
        assert (await worker.consumption_status(property_id))["consume_status"] == "consumed"

    async def test_unexpected_error_is_retried_like_an_outage(
        self,
        property_service: PropertyService,
        worker: ConsumptionWorker,
        ledger: SimulatedLedgerClient,
        sleeper: RecordingSleep,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        original = ledger.consume_note
        calls = 0

        async def flaky(note_id: str, account_id: str) -> str:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise KeyError("tx_id")
            return await original(note_id, account_id)

        monkeypatch.setattr(ledger, "consume_note", flaky)
        property_id = await _mint(property_service)
        await worker.drain()

        status = await worker.consumption_status(property_id)
        assert status["consume_status"] == "consumed"
        assert status["consume_retries"] == 1
        assert sleeper.delays == [60]

    async def test_locks_are_released_after_work(
        self,
        property_service: PropertyService,
        worker: ConsumptionWorker,
    ) -> None:
        await _mint(property_service, "P1")
        await _mint(property_service, "P2")
        await worker.drain()

        assert worker._locks == {}

    async def test_resume_picks_up_interrupted_rows(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        worker: ConsumptionWorker,
        ledger: SimulatedLedgerClient,
    ) -> None:
        await make_property(
            session_factory, property_id="P1", consume_status=ConsumeStatus.CONSUMING, note_id="note-p1"
        )
        await make_property(
            session_factory, property_id="P2", consume_status=ConsumeStatus.PENDING, note_id="note-p2"
        )
        await make_property(session_factory, property_id="P3", consume_status=ConsumeStatus.FAILED)
        ledger.consumable_notes["S"].extend(["note-p1", "note-p2"])

        resumed = await worker.resume_unfinished()
        await worker.drain()

        assert sorted(resumed) == ["P1", "P2"]
        assert (await worker.consumption_status("P1"))["consume_status"] == "consumed"
        assert (await worker.consumption_status("P2"))["consume_status"] == "consumed"
        assert (await worker.consumption_status("P3"))["consume_status"] == "failed"

    async def test_pending_consumptions_lists_unfinished(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        worker: ConsumptionWorker,
    ) -> None:
        await make_property(session_factory, property_id="P1")
        await make_property(session_factory, property_id="P2", consume_status=ConsumeStatus.FAILED)

        pending = await worker.pending_consumptions()

        assert [p["property_id"] for p in pending] == ["P2"]


@pytest.mark.asyncio
class TestSingleWriter:
    async def test_retry_refused_while_in_flight(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: SimulatedLedgerClient,
    ) -> None:
        entered = asyncio.Event()
        gate = asyncio.Event()

        async def gated_sleep(delay: float) -> None:
            entered.set()
            await gate.wait()

        worker = ConsumptionWorker(session_factory, ledger, sleep=gated_sleep)
        await make_property(session_factory, consume_status=ConsumeStatus.PENDING, note_id="note-p1")
        ledger.consumable_notes["S"].append("note-p1")
        ledger.inject_failure("consume_note")

        task = worker.schedule("P1")
        await entered.wait()

        assert worker.schedule("P1") is task
        with pytest.raises(ConflictError) as exc_info:
            await worker.request_retry("P1")
        assert exc_info.value.code == "CONSUMPTION_IN_PROGRESS"

        gate.set()
        await worker.drain()
        assert (await worker.consumption_status("P1"))["consume_status"] == "consumed"
        assert len(ledger.calls_to("consume_note")) == 2

    async def test_shutdown_cancels_in_flight_work(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: SimulatedLedgerClient,
    ) -> None:
        entered = asyncio.Event()

        async def hanging_sleep(delay: float) -> None:
            entered.set()
            await asyncio.Event().wait()

        worker = ConsumptionWorker(session_factory, ledger, sleep=hanging_sleep)
        await make_property(session_factory, consume_status=ConsumeStatus.PENDING, note_id="note-p1")
        ledger.inject_failure("consume_note")

        worker.schedule("P1")
        await entered.wait()
        await worker.shutdown()

        assert not worker.is_in_flight("P1")
        # The durable row is left for resume_unfinished.
        assert (await worker.consumption_status("P1"))["consume_status"] == "pending"
