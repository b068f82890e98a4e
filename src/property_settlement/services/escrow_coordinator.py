"""EscrowCoordinator — drives a ledger-held escrow account through its lifecycle.

Every operation is a single ledger call with no local retry; the offer and
settlement workflows decide what happens on failure.

The ledger's escrow endpoints disagree about identity: ``create`` wants the
human-readable account alias, while ``fund``/``release``/``refund`` want the
canonical account address. Callers pass whatever they hold and the
coordinator maps it through the AccountDirectory.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from property_settlement.domain.exceptions import ValidationError
from property_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from property_settlement.config import Settings
    from property_settlement.domain.ledger_protocol import EscrowAccount, LedgerClient

logger = get_logger(__name__)

CANONICAL_PREFIX = "0x"


class AccountDirectory:
    """Maps ledger account aliases to canonical addresses and back."""

    def __init__(self, accounts: dict[str, str] | None = None) -> None:
        self._by_alias = dict(accounts or {})
        self._by_address = {address.lower(): alias for alias, address in self._by_alias.items()}

    @classmethod
    def from_settings(cls, settings: Settings) -> AccountDirectory:
        return cls(settings.ledger_accounts)

    @staticmethod
    def is_canonical(account: str) -> bool:
        return account.startswith(CANONICAL_PREFIX)

    def address_for(self, account: str) -> str:
        """Resolve an alias (or pass through an address) to the canonical address."""
        if not account:
            raise ValidationError("Account identifier is required", field="account")
        if self.is_canonical(account):
            return account
        try:
            return self._by_alias[account]
        except KeyError:
            raise ValidationError(
                f"Unknown ledger account alias '{account}'", field="account"
            ) from None

    def aliases(self) -> list[str]:
        return sorted(self._by_alias)

    def alias_for(self, account: str) -> str:
        """Resolve an address back to its alias; aliases and unknown addresses pass through."""
        if not self.is_canonical(account):
            return account
        return self._by_address.get(account.lower(), account)


class EscrowCoordinator:
    """Single-call wrappers over the ledger escrow API, plus buyer pre-funding."""

    def __init__(self, ledger: LedgerClient, directory: AccountDirectory) -> None:
        self._ledger = ledger
        self._directory = directory

    @property
    def directory(self) -> AccountDirectory:
        return self._directory

    async def create(self, buyer: str, seller: str, amount: int) -> EscrowAccount:
        """Create the escrow account. Returns the ledger's view of it."""
        buyer_alias = self._directory.alias_for(buyer)
        seller_alias = self._directory.alias_for(seller)
        escrow = await self._ledger.create_escrow(buyer_alias, seller_alias, amount)
        logger.info(
            "escrow.created",
            escrow_id=escrow.escrow_account_id,
            buyer=buyer_alias,
            seller=seller_alias,
            amount=amount,
        )
        return escrow

    async def fund(self, escrow_id: str, buyer: str, seller: str, amount: int) -> str:
        """Lock the buyer's funds into the escrow. Returns the funding tx id."""
        tx_id = await self._ledger.fund_escrow(
            escrow_id,
            self._directory.address_for(buyer),
            self._directory.address_for(seller),
            amount,
        )
        logger.info("escrow.funded", escrow_id=escrow_id, tx_id=tx_id)
        return tx_id

    def resolve_parties(self, buyer: str, payee: str) -> tuple[str, str]:
        """Resolve both release parties to addresses. Raises ValidationError."""
        return self._directory.address_for(buyer), self._directory.address_for(payee)

    async def release(self, escrow_id: str, buyer: str, payee: str, amount: int) -> str:
        """Pay the escrowed amount out to ``payee``. Returns the release tx id."""
        tx_id = await self._ledger.release_escrow(
            escrow_id,
            self._directory.address_for(buyer),
            self._directory.address_for(payee),
            amount,
        )
        logger.info("escrow.released", escrow_id=escrow_id, payee=payee, tx_id=tx_id)
        return tx_id

    async def refund(self, escrow_id: str, buyer: str, seller: str, amount: int) -> str:
        """Return the escrowed amount to the buyer. Returns the refund tx id."""
        tx_id = await self._ledger.refund_escrow(
            escrow_id,
            self._directory.address_for(buyer),
            self._directory.address_for(seller),
            amount,
        )
        logger.info("escrow.refunded", escrow_id=escrow_id, buyer=buyer, tx_id=tx_id)
        return tx_id

    async def prefund_buyer(self, buyer: str, amount: int) -> str:
        """Send the offer amount to the buyer's account ahead of escrow funding."""
        tx_id = await self._ledger.send_value(buyer, amount)
        logger.info("escrow.buyer_prefunded", buyer=buyer, amount=amount, tx_id=tx_id)
        return tx_id
