"""ConsumptionWorker — absorbs freshly minted ledger notes into the owner's balance.

Per property:

    pending -> consuming -> consumed
                         -> pending   (failure, consume_retries < max; sleep, try again)
                         -> failed    (failure, consume_retries == max; kept for operators)
                         -> failed    (non-retryable error such as a rejected request)

Work is keyed by property_id and has a single writer per key:

    - an in-process asyncio.Lock per property serializes attempts, and
    - every attempt starts with a compare-and-swap on the row
      (pending -> consuming, matching the retry counter it read), so a
      duplicate task that slips past the lock finds nothing to claim.

The durable row (consume_status, consume_retries) is written before each
attempt, so after a crash ``resume_unfinished`` picks up exactly where the
process stopped. A manual retry is refused while a task for the key is in
flight.

Mint may hand back a placeholder note id (hex of ``note-PROP-...``) when the
real note has not propagated yet. The worker waits, then takes the owner's
most recent consumable note.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from property_settlement.domain.enums import ConsumeStatus
from property_settlement.domain.exceptions import (
    ConflictError,
    PropertyNotFoundError,
    SettlementServiceError,
    UpstreamError,
)
from property_settlement.domain.state_machine import ConsumptionStateMachine, validate_transition
from property_settlement.infrastructure.database.repositories import PropertyRepository
from property_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from property_settlement.domain.ledger_protocol import LedgerClient
    from property_settlement.infrastructure.database.orm_models import Property

logger = get_logger(__name__)

PLACEHOLDER_HEX_PREFIX = "0x6e6f74"  # hex("not")
PLACEHOLDER_TEXT_PREFIX = "note-PROP-"

_RETRY = "retry"


def is_placeholder_note_id(note_id: str | None) -> bool:
    """True if ``note_id`` is the hex-encoded ``note-PROP-...`` placeholder."""
    if not note_id or not note_id.startswith(PLACEHOLDER_HEX_PREFIX):
        return False
    try:
        decoded = bytes.fromhex(note_id[2:]).decode("utf-8")
    except ValueError:
        return False
    return decoded.startswith(PLACEHOLDER_TEXT_PREFIX)


def is_ready_for_settlement(prop: Property) -> bool:
    """A property can settle only once its minted note has been consumed."""
    return prop.consume_status == ConsumeStatus.CONSUMED


class ConsumptionWorker:
    """Background consumer of minted notes with bounded, durable retries."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ledger: LedgerClient,
        max_retries: int = 3,
        retry_delay_seconds: float = 60.0,
        placeholder_wait_seconds: float = 120.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._session_factory = session_factory
        self._ledger = ledger
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds
        self._placeholder_wait = placeholder_wait_seconds
        self._sleep = sleep
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._tasks: dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def schedule(self, property_id: str, resume: bool = False) -> asyncio.Task:
        """Start consuming ``property_id`` in the background.

        Returns the existing task if one is already in flight for the key.
        """
        existing = self._tasks.get(property_id)
        if existing is not None and not existing.done():
            return existing

        task = asyncio.create_task(
            self._run(property_id, resume=resume),
            name=f"consume:{property_id}",
        )
        self._tasks[property_id] = task
        task.add_done_callback(lambda t: self._on_task_done(property_id, t))
        logger.info("consumption.scheduled", property_id=property_id, resume=resume)
        return task

    def is_in_flight(self, property_id: str) -> bool:
        task = self._tasks.get(property_id)
        return task is not None and not task.done()

    def _on_task_done(self, property_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(property_id) is task:
            del self._tasks[property_id]
        lock = self._locks.get(property_id)
        if property_id not in self._tasks and lock is not None and not lock.locked():
            del self._locks[property_id]
        if task.cancelled():
            logger.info("consumption.task_cancelled", property_id=property_id)
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "consumption.task_crashed",
                property_id=property_id,
                error=str(exc),
                exc_info=exc,
            )

    async def drain(self) -> None:
        """Wait for every in-flight task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel in-flight tasks. Durable state lets resume_unfinished pick them up."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("consumption.worker_stopped", cancelled=len(tasks))

    # ------------------------------------------------------------------
    # Operator / API surface
    # ------------------------------------------------------------------

    async def consumption_status(self, property_id: str) -> dict:
        prop = await self._load(property_id)
        return self._status_view(prop)

    async def pending_consumptions(self) -> list[dict]:
        """Properties whose note is not consumed yet (pending, consuming or failed)."""
        async with self._session_factory() as session:
            props = await PropertyRepository(session).get_by_consume_status(
                [ConsumeStatus.PENDING, ConsumeStatus.CONSUMING, ConsumeStatus.FAILED]
            )
        return [self._status_view(p) for p in props]

    async def request_retry(self, property_id: str) -> dict:
        """Manually (re)start consumption for a property.

        Allowed from ``failed`` (the retry budget is reset) and from ``pending``
        when nothing is in flight. Refused while a task for the key runs.
        """
        if self.is_in_flight(property_id):
            raise ConflictError(
                f"Consumption for {property_id} is already in progress",
                code="CONSUMPTION_IN_PROGRESS",
                details={"property_id": property_id},
            )

        prop = await self._load(property_id)
        current = prop.consume_status
        validate_transition(ConsumptionStateMachine, current, "manual_retry")

        if current == ConsumeStatus.FAILED:
            async with self._session_factory() as session, session.begin():
                reset = await PropertyRepository(session).compare_and_set(
                    property_id,
                    {"consume_status": ConsumeStatus.FAILED},
                    consume_status=ConsumeStatus.PENDING,
                    consume_retries=0,
                    consume_error=None,
                    consume_completed_at=None,
                )
            if not reset:
                raise ConflictError(
                    f"Consumption for {property_id} changed concurrently",
                    code="STALE_WRITE",
                    details={"property_id": property_id},
                )

        logger.info("consumption.manual_retry", property_id=property_id, previous=current)
        self.schedule(property_id)
        return await self.consumption_status(property_id)

    async def resume_unfinished(self) -> list[str]:
        """Re-schedule rows left pending or consuming by a previous process."""
        async with self._session_factory() as session:
            props = await PropertyRepository(session).get_by_consume_status(
                [ConsumeStatus.PENDING, ConsumeStatus.CONSUMING]
            )
        resumed = []
        for prop in props:
            self.schedule(prop.property_id, resume=True)
            resumed.append(prop.property_id)
        if resumed:
            logger.info("consumption.resumed", count=len(resumed), property_ids=resumed)
        return resumed

    # ------------------------------------------------------------------
    # Worker loop
    # ------------------------------------------------------------------

    async def _run(self, property_id: str, resume: bool = False) -> str | None:
        async with self._locks[property_id]:
            while True:
                outcome = await self._attempt(property_id, resume=resume)
                resume = False
                if outcome != _RETRY:
                    return outcome
                await self._sleep(self._retry_delay)

    async def _attempt(self, property_id: str, resume: bool) -> str | None:
        claim = await self._claim(property_id, resume)
        if claim is None:
            return None
        if isinstance(claim, str):
            return claim
        note_id, owner, retries = claim

        # Every path out of here leaves the row consumed, pending or failed.
        try:
            note_id = await self._resolve_note(property_id, note_id, owner)
            tx_id = await self._ledger.consume_note(note_id, owner)
        except UpstreamError as exc:
            return await self._record_failure(property_id, retries, exc.message)
        except SettlementServiceError as exc:
            return await self._record_failure(property_id, retries, exc.message, permanent=True)
        except Exception as exc:
            logger.exception("consumption.unexpected_error", property_id=property_id)
            return await self._record_failure(property_id, retries, f"{type(exc).__name__}: {exc}")

        try:
            async with self._session_factory() as session, session.begin():
                await PropertyRepository(session).compare_and_set(
                    property_id,
                    {"consume_status": ConsumeStatus.CONSUMING},
                    consume_status=ConsumeStatus.CONSUMED,
                    consume_tx_id=tx_id,
                    note_id=note_id,
                    consume_error=None,
                    consume_completed_at=datetime.now(UTC),
                )
        except Exception as exc:
            logger.exception("consumption.record_failed", property_id=property_id, tx_id=tx_id)
            return await self._record_failure(
                property_id,
                retries,
                f"Note consumed on the ledger ({tx_id}) but not recorded: {exc}",
                permanent=True,
                consume_tx_id=tx_id,
            )
        logger.info(
            "consumption.succeeded",
            property_id=property_id,
            tx_id=tx_id,
            attempts=retries + 1,
        )
        return ConsumeStatus.CONSUMED.value

    async def _claim(
        self, property_id: str, resume: bool
    ) -> tuple[str, str, int] | str | None:
        """Durably move the row to ``consuming``.

        Returns (note_id, owner, retries) when claimed, the current status
        when there is nothing to do, or None if the property is gone.
        """
        async with self._session_factory() as session, session.begin():
            repo = PropertyRepository(session)
            prop = await repo.get_by_id(property_id)
            if prop is None:
                logger.warning("consumption.property_missing", property_id=property_id)
                return None

            current = prop.consume_status
            if current == ConsumeStatus.PENDING:
                event = "start"
            elif current == ConsumeStatus.CONSUMING and resume:
                event = "reclaim"
            else:
                logger.info("consumption.skipped", property_id=property_id, status=current)
                return current

            validate_transition(ConsumptionStateMachine, current, event)
            claimed = await repo.compare_and_set(
                property_id,
                {"consume_status": current, "consume_retries": prop.consume_retries},
                consume_status=ConsumeStatus.CONSUMING,
                consume_started_at=datetime.now(UTC),
            )
            if not claimed:
                logger.info("consumption.claim_lost", property_id=property_id)
                return ConsumeStatus.CONSUMING.value

            logger.info(
                "consumption.attempt",
                property_id=property_id,
                retries=prop.consume_retries,
                owner=prop.owner_account_id,
            )
            return prop.note_id or "", prop.owner_account_id, prop.consume_retries

    async def _resolve_note(self, property_id: str, note_id: str, owner: str) -> str:
        if not is_placeholder_note_id(note_id):
            return note_id

        logger.info("consumption.placeholder_note", property_id=property_id, wait=self._placeholder_wait)
        await self._sleep(self._placeholder_wait)

        notes = await self._ledger.get_consumable_notes(owner)
        if not notes:
            raise UpstreamError(
                f"No consumable notes yet for {owner}",
                operation="get_consumable_notes",
            )
        resolved = notes[-1]

        async with self._session_factory() as session, session.begin():
            await PropertyRepository(session).compare_and_set(
                property_id,
                {"consume_status": ConsumeStatus.CONSUMING},
                note_id=resolved,
            )
        logger.info("consumption.note_resolved", property_id=property_id, note_id=resolved)
        return resolved

    async def _record_failure(
        self,
        property_id: str,
        retries: int,
        error: str,
        permanent: bool = False,
        **values: object,
    ) -> str:
        """Move a ``consuming`` row back to pending, or to failed when the
        budget is spent or the error cannot be fixed by waiting."""
        async with self._session_factory() as session, session.begin():
            repo = PropertyRepository(session)
            if not permanent and retries < self._max_retries:
                validate_transition(ConsumptionStateMachine, ConsumeStatus.CONSUMING, "schedule_retry")
                await repo.compare_and_set(
                    property_id,
                    {"consume_status": ConsumeStatus.CONSUMING},
                    consume_status=ConsumeStatus.PENDING,
                    consume_retries=retries + 1,
                    consume_error=error,
                )
                outcome = _RETRY
            else:
                validate_transition(ConsumptionStateMachine, ConsumeStatus.CONSUMING, "give_up")
                await repo.compare_and_set(
                    property_id,
                    {"consume_status": ConsumeStatus.CONSUMING},
                    consume_status=ConsumeStatus.FAILED,
                    consume_error=error,
                    consume_completed_at=datetime.now(UTC),
                    **values,
                )
                outcome = ConsumeStatus.FAILED.value

        if outcome == _RETRY:
            logger.warning(
                "consumption.retry_scheduled",
                property_id=property_id,
                retry=retries + 1,
                max_retries=self._max_retries,
                delay=self._retry_delay,
                error=error,
            )
        else:
            logger.error(
                "consumption.failed",
                property_id=property_id,
                retries=retries,
                permanent=permanent,
                error=error,
            )
        return outcome

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _load(self, property_id: str) -> Property:
        async with self._session_factory() as session:
            prop = await PropertyRepository(session).get_by_id(property_id)
        if prop is None:
            raise PropertyNotFoundError(property_id)
        return prop

    def _status_view(self, prop: Property) -> dict:
        machine = ConsumptionStateMachine(current_status=prop.consume_status)
        return {
            "property_id": prop.property_id,
            "consume_status": prop.consume_status,
            "consume_retries": prop.consume_retries,
            "max_retries": self._max_retries,
            "consume_error": prop.consume_error,
            "consume_tx_id": prop.consume_tx_id,
            "note_id": prop.note_id,
            "consume_started_at": prop.consume_started_at,
            "consume_completed_at": prop.consume_completed_at,
            "ready_for_settlement": is_ready_for_settlement(prop),
            "in_flight": self.is_in_flight(prop.property_id),
            "can_retry": (
                "manual_retry" in machine.get_allowed_events()
                and not self.is_in_flight(prop.property_id)
            ),
        }
