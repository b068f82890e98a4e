"""Ledger clients — concrete implementations of the LedgerClient protocol."""

from __future__ import annotations

from typing import TYPE_CHECKING

from property_settlement.infrastructure.ledger.http_client import HttpLedgerClient
from property_settlement.infrastructure.ledger.simulated import (
    SimulatedLedgerClient,
    placeholder_note_id,
)
from property_settlement.logging_config import get_logger

if TYPE_CHECKING:
    from property_settlement.config import Settings
    from property_settlement.domain.ledger_protocol import LedgerClient

logger = get_logger(__name__)


def build_ledger_client(settings: Settings) -> LedgerClient:
    """Create the ledger client selected by configuration."""
    if settings.ledger_simulate:
        logger.info("ledger.using_simulated_client")
        return SimulatedLedgerClient(timeout_seconds=settings.ledger_timeout_seconds)
    return HttpLedgerClient(
        base_url=settings.ledger_service_url,
        timeout_seconds=settings.ledger_timeout_seconds,
    )


__all__ = [
    "HttpLedgerClient",
    "SimulatedLedgerClient",
    "build_ledger_client",
    "placeholder_note_id",
]
