"""LedgerClient Protocol.

Defines the fixed contract of the external ledger/proof service. The core
consumes this interface and never interprets ledger internals beyond
success/failure and the returned transaction id.

This is a Protocol (structural subtyping) so concrete clients don't need
to inherit from a base class — they just need to match the shape. Every
method either returns its result or raises UpstreamError; a timeout is
raised as UpstreamError with ``timed_out=True``.

The domain layer has ZERO imports from httpx or any transport.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class MintResult:
    """Returned by mint_asset. ``note_id`` may be a placeholder."""

    note_id: str
    tx_id: str


@dataclass(frozen=True)
class EscrowAccount:
    """Escrow account as reported by the ledger on creation.

    Buyer and seller come back in canonical address form.
    """

    escrow_account_id: str
    buyer_address: str
    seller_address: str
    amount: int
    status: str = "created"


@dataclass(frozen=True)
class GeneratedProof:
    """An opaque ZK proof plus the public inputs it commits to."""

    kind: str
    proof: str
    program_hash: str = ""
    public_inputs: list[int] = field(default_factory=list)
    threshold: int | None = None

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "proof": self.proof,
            "program_hash": self.program_hash,
            "public_inputs": list(self.public_inputs),
            "threshold": self.threshold,
        }


@runtime_checkable
class LedgerClient(Protocol):
    """Protocol that all ledger client implementations must satisfy.

    Concrete implementations:
        - infrastructure/ledger/http_client.py  (ledger bridge over HTTP)
        - infrastructure/ledger/simulated.py    (deterministic fake)
    """

    async def mint_asset(
        self, owner_id: str, content_ref: str, kind: str, price: int, asset_id: str
    ) -> MintResult: ...

    async def get_consumable_notes(self, owner_id: str) -> list[str]: ...

    async def consume_note(self, note_id: str, owner_id: str) -> str: ...

    async def transfer_property(self, property_id: str, to_owner_id: str) -> str: ...

    async def send_value(self, to_id: str, amount: int) -> str: ...

    async def get_balance(self, owner_id: str) -> int: ...

    async def create_escrow(
        self, buyer_alias: str, seller_alias: str, amount: int
    ) -> EscrowAccount: ...

    async def fund_escrow(
        self, escrow_id: str, buyer_address: str, seller_address: str, amount: int
    ) -> str: ...

    async def release_escrow(
        self, escrow_id: str, buyer_address: str, seller_address: str, amount: int
    ) -> str: ...

    async def refund_escrow(
        self, escrow_id: str, buyer_address: str, seller_address: str, amount: int
    ) -> str: ...

    async def generate_proof(
        self,
        kind: str,
        private_input: int | str,
        public_threshold: int | None = None,
        restricted_countries: list[str] | None = None,
    ) -> GeneratedProof: ...

    async def verify_proof(self, proof: GeneratedProof) -> bool: ...

    async def aclose(self) -> None: ...
