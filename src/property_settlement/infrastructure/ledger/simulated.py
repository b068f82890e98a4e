"""SimulatedLedgerClient — deterministic in-process stand-in for the ledger.

Used by the test suite, the simulation script and local development
(``LEDGER_SIMULATE=true``). It keeps just enough ledger state to behave
plausibly: asset owners, balances, consumable notes and escrow accounts.

Transaction ids are deterministic (``tx-<operation>-<sequence>``), every call
is recorded in ``calls`` so tests can assert exactly which ledger operations
ran, and failures or timeouts can be injected per operation:

    ledger = SimulatedLedgerClient()
    ledger.inject_failure("release_escrow")             # next call fails
    ledger.inject_failure("consume_note", times=4)      # next four fail
    ledger.inject_failure("transfer_property", timeout=True)
"""

from __future__ import annotations

import asyncio
import hashlib
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any

from property_settlement.domain.exceptions import UpstreamError, ValidationError
from property_settlement.domain.ledger_protocol import (
    EscrowAccount,
    GeneratedProof,
    MintResult,
)
from property_settlement.logging_config import get_logger

logger = get_logger(__name__)


def placeholder_note_id(asset_id: str) -> str:
    """Hex-encode ``note-PROP-<asset_id>`` the way the ledger bridge does before a note exists."""
    return "0x" + f"note-PROP-{asset_id}".encode().hex()


def _address_for(alias: str) -> str:
    if alias.startswith("0x"):
        return alias
    return "0x" + hashlib.sha256(alias.encode()).hexdigest()[:30]


@dataclass
class _Injection:
    message: str
    timeout: bool = False


@dataclass
class _Escrow:
    buyer_address: str
    seller_address: str
    amount: int
    status: str = "created"


@dataclass
class LedgerCall:
    operation: str
    args: dict[str, Any] = field(default_factory=dict)


class SimulatedLedgerClient:
    """Deterministic LedgerClient fake with failure and timeout injection."""

    def __init__(
        self,
        placeholder_notes: bool = False,
        latency_seconds: float = 0.0,
        timeout_seconds: float | None = None,
    ) -> None:
        """Create a fake ledger.

        Args:
            placeholder_notes: If True, mint returns a placeholder note id that
                only resolves through get_consumable_notes.
            latency_seconds: Artificial delay applied to every call.
            timeout_seconds: Bound applied to every call; exceeding it raises
                UpstreamError(timed_out=True) like the HTTP client does.
        """
        self.placeholder_notes = placeholder_notes
        self.latency_seconds = latency_seconds
        self.timeout_seconds = timeout_seconds

        self.calls: list[LedgerCall] = []
        self.asset_owners: dict[str, str] = {}
        self.balances: dict[str, int] = defaultdict(int)
        self.consumable_notes: dict[str, list[str]] = defaultdict(list)
        self.escrows: dict[str, _Escrow] = {}

        self._sequence = 0
        self._injections: dict[str, deque[_Injection]] = defaultdict(deque)

    # ------------------------------------------------------------------
    # Test controls
    # ------------------------------------------------------------------

    def inject_failure(
        self,
        operation: str,
        times: int = 1,
        message: str | None = None,
        timeout: bool = False,
    ) -> None:
        """Make the next ``times`` calls of ``operation`` fail (or time out)."""
        for _ in range(times):
            self._injections[operation].append(
                _Injection(message=message or f"simulated {operation} failure", timeout=timeout)
            )

    def operations(self) -> list[str]:
        """Names of every call made so far, in order."""
        return [call.operation for call in self.calls]

    def calls_to(self, operation: str) -> list[LedgerCall]:
        return [call for call in self.calls if call.operation == operation]

    async def aclose(self) -> None:
        return None

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _next_tx(self, operation: str) -> str:
        self._sequence += 1
        return f"tx-{operation}-{self._sequence:06d}"

    async def _enter(self, operation: str, **args: Any) -> None:
        """Record the call, apply latency, then raise any injected failure."""
        self.calls.append(LedgerCall(operation=operation, args=args))

        if self.latency_seconds:
            try:
                async with asyncio.timeout(self.timeout_seconds):
                    await asyncio.sleep(self.latency_seconds)
            except TimeoutError as exc:
                raise UpstreamError(
                    f"Ledger call '{operation}' timed out after {self.timeout_seconds}s",
                    operation=operation,
                    timed_out=True,
                ) from exc

        queue = self._injections.get(operation)
        if queue:
            injection = queue.popleft()
            logger.debug("ledger.simulated_failure", operation=operation, timeout=injection.timeout)
            if injection.timeout:
                raise UpstreamError(
                    f"Ledger call '{operation}' timed out",
                    operation=operation,
                    timed_out=True,
                )
            raise UpstreamError(injection.message, operation=operation)

    # ------------------------------------------------------------------
    # Assets & notes
    # ------------------------------------------------------------------

    async def mint_asset(
        self, owner_id: str, content_ref: str, kind: str, price: int, asset_id: str
    ) -> MintResult:
        await self._enter("mint_asset", owner_id=owner_id, asset_id=asset_id, price=price)
        tx_id = self._next_tx("mint_asset")
        real_note = f"note-{hashlib.sha256(f'{asset_id}:{tx_id}'.encode()).hexdigest()[:24]}"
        self.asset_owners[asset_id] = owner_id
        self.consumable_notes[owner_id].append(real_note)
        note_id = placeholder_note_id(asset_id) if self.placeholder_notes else real_note
        return MintResult(note_id=note_id, tx_id=tx_id)

    async def get_consumable_notes(self, owner_id: str) -> list[str]:
        await self._enter("get_consumable_notes", owner_id=owner_id)
        return list(self.consumable_notes.get(owner_id, []))

    async def consume_note(self, note_id: str, owner_id: str) -> str:
        await self._enter("consume_note", note_id=note_id, owner_id=owner_id)
        notes = self.consumable_notes.get(owner_id, [])
        if note_id not in notes:
            raise UpstreamError(f"Note {note_id} is not consumable by {owner_id}", operation="consume_note")
        notes.remove(note_id)
        return self._next_tx("consume_note")

    async def transfer_property(self, property_id: str, to_owner_id: str) -> str:
        await self._enter("transfer_property", property_id=property_id, to_owner_id=to_owner_id)
        self.asset_owners[property_id] = to_owner_id
        return self._next_tx("transfer_property")

    async def send_value(self, to_id: str, amount: int) -> str:
        await self._enter("send_value", to_id=to_id, amount=amount)
        self.balances[to_id] += int(amount)
        return self._next_tx("send_value")

    async def get_balance(self, owner_id: str) -> int:
        await self._enter("get_balance", owner_id=owner_id)
        return self.balances[owner_id]

    # ------------------------------------------------------------------
    # Escrow
    # ------------------------------------------------------------------

    async def create_escrow(self, buyer_alias: str, seller_alias: str, amount: int) -> EscrowAccount:
        await self._enter("create_escrow", buyer_alias=buyer_alias, seller_alias=seller_alias, amount=amount)
        self._sequence += 1
        escrow_id = f"escrow-{self._sequence:06d}"
        escrow = _Escrow(
            buyer_address=_address_for(buyer_alias),
            seller_address=_address_for(seller_alias),
            amount=int(amount),
        )
        self.escrows[escrow_id] = escrow
        return EscrowAccount(
            escrow_account_id=escrow_id,
            buyer_address=escrow.buyer_address,
            seller_address=escrow.seller_address,
            amount=escrow.amount,
            status=escrow.status,
        )

    def _require_escrow(self, operation: str, escrow_id: str, expected_status: str) -> _Escrow:
        escrow = self.escrows.get(escrow_id)
        if escrow is None:
            raise UpstreamError(f"Unknown escrow account {escrow_id}", operation=operation)
        if escrow.status != expected_status:
            raise UpstreamError(
                f"Escrow {escrow_id} is {escrow.status}, expected {expected_status}",
                operation=operation,
            )
        return escrow

    async def fund_escrow(
        self, escrow_id: str, buyer_address: str, seller_address: str, amount: int
    ) -> str:
        await self._enter("fund_escrow", escrow_id=escrow_id, buyer_address=buyer_address, amount=amount)
        escrow = self._require_escrow("fund_escrow", escrow_id, "created")
        escrow.status = "funded"
        return self._next_tx("fund_escrow")

    async def release_escrow(
        self, escrow_id: str, buyer_address: str, seller_address: str, amount: int
    ) -> str:
        await self._enter(
            "release_escrow", escrow_id=escrow_id, seller_address=seller_address, amount=amount
        )
        escrow = self._require_escrow("release_escrow", escrow_id, "funded")
        escrow.status = "released"
        escrow.seller_address = seller_address
        self.balances[seller_address] += escrow.amount
        return self._next_tx("release_escrow")

    async def refund_escrow(
        self, escrow_id: str, buyer_address: str, seller_address: str, amount: int
    ) -> str:
        await self._enter("refund_escrow", escrow_id=escrow_id, buyer_address=buyer_address, amount=amount)
        escrow = self._require_escrow("refund_escrow", escrow_id, "funded")
        escrow.status = "refunded"
        self.balances[buyer_address] += escrow.amount
        return self._next_tx("refund_escrow")

    # ------------------------------------------------------------------
    # ZK proofs
    # ------------------------------------------------------------------

    async def generate_proof(
        self,
        kind: str,
        private_input: int | str,
        public_threshold: int | None = None,
        restricted_countries: list[str] | None = None,
    ) -> GeneratedProof:
        await self._enter("generate_proof", kind=kind, public_threshold=public_threshold)

        if kind == "accreditation":
            if public_threshold is None or int(private_input) < public_threshold:
                raise ValidationError("Net worth does not meet threshold", field="private_input")
            public_inputs = [public_threshold]
        elif kind == "jurisdiction":
            restricted = [c.upper() for c in restricted_countries or []]
            if str(private_input).upper() in restricted:
                raise ValidationError("User is in a restricted jurisdiction", field="private_input")
            public_inputs = [len(restricted)]
        else:
            public_inputs = []

        self._sequence += 1
        digest = hashlib.sha256(f"{kind}:{self._sequence}".encode()).hexdigest()
        return GeneratedProof(
            kind=kind,
            proof=f"sim-proof-{digest[:32]}",
            program_hash=digest[32:],
            public_inputs=public_inputs,
            threshold=public_threshold if kind == "accreditation" else None,
        )

    async def verify_proof(self, proof: GeneratedProof) -> bool:
        await self._enter("verify_proof", kind=proof.kind)
        return proof.proof.startswith("sim-proof-")
