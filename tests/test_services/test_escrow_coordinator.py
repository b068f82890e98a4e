"""Tests for the AccountDirectory and EscrowCoordinator."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from property_settlement.config import Settings
from property_settlement.domain.exceptions import UpstreamError, ValidationError
from property_settlement.services.escrow_coordinator import AccountDirectory
from tests.factories import ACCOUNTS

if TYPE_CHECKING:
    from property_settlement.infrastructure.ledger.simulated import SimulatedLedgerClient
    from property_settlement.services.escrow_coordinator import EscrowCoordinator


class TestAccountDirectory:
    def test_alias_resolves_to_address(self) -> None:
        directory = AccountDirectory(ACCOUNTS)
        assert directory.address_for("S") == ACCOUNTS["S"]

    def test_address_passes_through(self) -> None:
        directory = AccountDirectory(ACCOUNTS)
        assert directory.address_for("0xabc") == "0xabc"

    def test_unknown_alias_is_validation_error(self) -> None:
        with pytest.raises(ValidationError, match="Unknown ledger account alias"):
            AccountDirectory(ACCOUNTS).address_for("nobody")

    def test_empty_account_is_validation_error(self) -> None:
        with pytest.raises(ValidationError):
            AccountDirectory(ACCOUNTS).address_for("")

    def test_alias_for_is_case_insensitive(self) -> None:
        directory = AccountDirectory(ACCOUNTS)
        assert directory.alias_for(ACCOUNTS["B"].upper().replace("0X", "0x")) == "B"
        assert directory.alias_for("B") == "B"
        assert directory.alias_for("0xdeadbeef") == "0xdeadbeef"

    def test_aliases_sorted(self) -> None:
        assert AccountDirectory(ACCOUNTS).aliases() == ["B", "C", "S"]

    def test_aliases_decoded_from_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LEDGER_ACCOUNTS", '{"alice": "0xa1", "bob": "0xb0"}')
        directory = AccountDirectory.from_settings(Settings(_env_file=None))
        assert directory.address_for("alice") == "0xa1"
        assert directory.aliases() == ["alice", "bob"]

    def test_no_aliases_configured_by_default(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("LEDGER_ACCOUNTS", raising=False)
        assert Settings(_env_file=None).ledger_accounts == {}

    def test_release_parties_resolved_together(self, escrow: EscrowCoordinator) -> None:
        assert escrow.resolve_parties("B", "S") == (ACCOUNTS["B"], ACCOUNTS["S"])
        with pytest.raises(ValidationError):
            escrow.resolve_parties("B", "nobody")


@pytest.mark.asyncio
class TestEscrowCoordinator:
    async def test_create_uses_aliases(
        self, escrow: EscrowCoordinator, ledger: SimulatedLedgerClient
    ) -> None:
        account = await escrow.create(ACCOUNTS["B"], "S", 100)
        call = ledger.calls_to("create_escrow")[0]
        assert call.args["buyer_alias"] == "B"
        assert call.args["seller_alias"] == "S"
        assert account.amount == 100

    async def test_fund_and_release_use_addresses(
        self, escrow: EscrowCoordinator, ledger: SimulatedLedgerClient
    ) -> None:
        account = await escrow.create("B", "S", 100)
        fund_tx = await escrow.fund(account.escrow_account_id, "B", "S", 100)
        release_tx = await escrow.release(account.escrow_account_id, "B", "S", 100)

        assert fund_tx.startswith("tx-fund_escrow-")
        assert release_tx.startswith("tx-release_escrow-")
        assert ledger.calls_to("fund_escrow")[0].args["buyer_address"] == ACCOUNTS["B"]
        assert ledger.calls_to("release_escrow")[0].args["seller_address"] == ACCOUNTS["S"]
        assert ledger.balances[ACCOUNTS["S"]] == 100

    async def test_refund_credits_buyer(
        self, escrow: EscrowCoordinator, ledger: SimulatedLedgerClient
    ) -> None:
        account = await escrow.create("B", "S", 70)
        await escrow.fund(account.escrow_account_id, "B", "S", 70)
        await escrow.refund(account.escrow_account_id, "B", "S", 70)
        assert ledger.balances[ACCOUNTS["B"]] == 70

    async def test_failure_is_not_retried(
        self, escrow: EscrowCoordinator, ledger: SimulatedLedgerClient
    ) -> None:
        ledger.inject_failure("create_escrow")
        with pytest.raises(UpstreamError):
            await escrow.create("B", "S", 100)
        assert ledger.operations() == ["create_escrow"]

    async def test_prefund_buyer_sends_value(
        self, escrow: EscrowCoordinator, ledger: SimulatedLedgerClient
    ) -> None:
        tx_id = await escrow.prefund_buyer("B", 100)
        assert tx_id.startswith("tx-send_value-")
        assert ledger.balances["B"] == 100
