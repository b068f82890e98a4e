"""MCP Tool definitions for the Property Settlement service.

These tools expose the offer and settlement workflow via the Model Context
Protocol, so agents acting for buyers, sellers or operators can discover
and call them programmatically.

Tools:
    - issue_proof: Generate and store an accreditation / jurisdiction proof
    - check_eligibility: Would this buyer pass the compliance gate?
    - make_offer: Make an offer on a listed property
    - accept_offer: Accept an offer and fund its escrow
    - reject_offer: Reject a pending offer
    - check_settlement_ready: Report settlement preconditions
    - execute_settlement: Transfer the property and release escrow
    - consumption_status: Check a property's note consumption

The MCP server is mounted into FastAPI at /mcp via app.mount(). Tools share
the process runtime (ledger client + consumption worker) with the REST API.
Domain errors come back as ``{"error", "reason", "message", "details"}``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from mcp.server.fastmcp import FastMCP

from property_settlement.domain.exceptions import SettlementServiceError
from property_settlement.logging_config import get_logger
from property_settlement.runtime import get_runtime

if TYPE_CHECKING:
    from datetime import datetime

logger = get_logger(__name__)

# Initialize the MCP server
# This will be mounted into the FastAPI app in main.py
mcp = FastMCP(
    "Property Settlement",
    json_response=True,
)


def _error(tool: str, exc: SettlementServiceError) -> dict:
    logger.warning(f"mcp.{tool}.error", code=exc.code, error=exc.message)
    return exc.to_dict()


@mcp.tool()
async def issue_proof(
    owner_identifier: str,
    kind: str,
    private_input: str,
    threshold: int = 0,
    restricted_countries: str = "",
) -> dict:
    """Generate a zero-knowledge proof and store it for the compliance gate.

    Args:
        owner_identifier: Your user identifier.
        kind: 'accreditation' or 'jurisdiction'.
        private_input: Net worth (accreditation) or country code (jurisdiction). Never stored.
        threshold: Public net-worth threshold, accreditation only.
        restricted_countries: Comma-separated country codes, jurisdiction only.

    Returns:
        The stored proof's id, type, verification outcome and expiry.
    """
    countries = [c.strip() for c in restricted_countries.split(",") if c.strip()]
    value: int | str = int(private_input) if kind == "accreditation" and private_input.isdigit() else private_input
    try:
        proof = await get_runtime().proofs().issue_proof(
            owner_identifier=owner_identifier,
            kind=kind,
            private_input=value,
            threshold=threshold or None,
            restricted_countries=countries or None,
        )
    except SettlementServiceError as exc:
        return _error("issue_proof", exc)
    return {
        "proof_id": str(proof.id),
        "type": proof.type,
        "verified": proof.verified,
        "expires_at": proof.expires_at.isoformat(),
    }


@mcp.tool()
async def check_eligibility(property_id: str, buyer_user_identifier: str) -> dict:
    """Check whether a buyer's stored proofs satisfy a property's requirements.

    Args:
        property_id: The property to check against.
        buyer_user_identifier: The buyer's user identifier.

    Returns:
        ``eligible`` plus, for each unmet requirement, its type and reason.
    """
    runtime = get_runtime()
    try:
        prop = await runtime.properties().get_property(property_id)
        result = await runtime.compliance().check_eligibility(prop, buyer_user_identifier)
    except SettlementServiceError as exc:
        return _error("check_eligibility", exc)
    return result.to_dict()


@mcp.tool()
async def make_offer(
    property_id: str,
    buyer_account_id: str,
    buyer_user_identifier: str,
    offer_price: int,
) -> dict:
    """Make an offer on a listed, verified property.

    Args:
        property_id: The property to buy.
        buyer_account_id: Your ledger account (alias or 0x address).
        buyer_user_identifier: Your user identifier (the proofs' owner).
        offer_price: Offered amount in ledger value units.

    Returns:
        The pending offer, including the offer_id needed for later calls.
    """
    try:
        offer = await get_runtime().offers().create_offer(
            property_id=property_id,
            buyer_account_id=buyer_account_id,
            buyer_user_identifier=buyer_user_identifier,
            offer_price=offer_price,
        )
    except SettlementServiceError as exc:
        return _error("make_offer", exc)
    return {
        "offer_id": offer.offer_id,
        "status": offer.status,
        "expires_at": offer.expires_at.isoformat(),
        "buyer_prefunded": bool(offer.buyer_funding_tx_id),
        "message": "Offer created. The seller must accept it before settlement.",
    }


@mcp.tool()
async def accept_offer(offer_id: str, actor: str = "SELLER") -> dict:
    """Accept a pending offer. Creates and funds the escrow.

    Args:
        offer_id: The offer to accept.
        actor: Who is accepting (for the audit trail).

    Returns:
        The accepted offer's status and escrow details.
    """
    try:
        offer = await get_runtime().offers().accept_offer(offer_id, actor=actor)
    except SettlementServiceError as exc:
        return _error("accept_offer", exc)
    return {
        "offer_id": offer.offer_id,
        "status": offer.status,
        "escrow_id": offer.escrow_id,
        "escrow_status": offer.escrow_status,
        "message": "Offer accepted and escrow funded. Next step: settlement.",
    }


@mcp.tool()
async def reject_offer(offer_id: str, reason: str = "", actor: str = "SELLER") -> dict:
    """Reject a pending offer.

    Args:
        offer_id: The offer to reject.
        reason: Optional reason shown to the buyer.
        actor: Who is rejecting (for the audit trail).
    """
    try:
        offer = await get_runtime().offers().reject_offer(offer_id, reason=reason or None, actor=actor)
    except SettlementServiceError as exc:
        return _error("reject_offer", exc)
    return {"offer_id": offer.offer_id, "status": offer.status}


@mcp.tool()
async def check_settlement_ready(offer_id: str) -> dict:
    """Report every settlement precondition for an accepted offer. Makes no ledger calls.

    Args:
        offer_id: The accepted offer.
    """
    try:
        return await get_runtime().settlement().check_settlement_ready(offer_id)
    except SettlementServiceError as exc:
        return _error("check_settlement_ready", exc)


@mcp.tool()
async def execute_settlement(offer_id: str, actor: str = "SELLER") -> dict:
    """Settle an accepted offer: transfer the property, then release escrow.

    Args:
        offer_id: The accepted offer to settle.
        actor: Who is settling (for the audit trail).

    Returns:
        Transfer and release transaction ids and the new owner.
    """
    try:
        result = await get_runtime().settlement().execute_settlement(offer_id, actor=actor)
    except SettlementServiceError as exc:
        return _error("execute_settlement", exc)
    return result.to_dict()


@mcp.tool()
async def consumption_status(property_id: str) -> dict:
    """Check whether a property's minted note has been consumed.

    Args:
        property_id: The property to check.
    """
    try:
        status = await get_runtime().worker.consumption_status(property_id)
    except SettlementServiceError as exc:
        return _error("consumption_status", exc)
    return {
        **status,
        "consume_started_at": _iso(status["consume_started_at"]),
        "consume_completed_at": _iso(status["consume_completed_at"]),
    }


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
