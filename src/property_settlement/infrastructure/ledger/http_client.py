"""HttpLedgerClient — talks to the ledger bridge service over HTTP.

The bridge wraps the blockchain node and the ZK prover. Every response is a
JSON envelope ``{"success": bool, "error": str | None, ...}``; anything other
than a successful envelope is raised as UpstreamError. Blockchain
confirmation is slow, so every call shares one generous timeout and a
timeout is reported as ``UpstreamError(timed_out=True)``.

HTTP 422 from the prover means the private input does not satisfy the public
statement (e.g. net worth below threshold); that is the caller's problem,
not the ledger's, and is raised as ValidationError.
"""

from __future__ import annotations

from typing import Any

import httpx
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from property_settlement.domain.exceptions import UpstreamError, ValidationError
from property_settlement.domain.ledger_protocol import (
    EscrowAccount,
    GeneratedProof,
    MintResult,
)
from property_settlement.logging_config import get_logger

logger = get_logger(__name__)

PROPERTY_KIND_CODES = {
    "residential": 0,
    "commercial": 1,
    "land": 2,
}

_PROOF_ENDPOINTS = {
    "accreditation": ("/generate-accreditation-proof", "/verify-accreditation-proof"),
    "jurisdiction": ("/generate-jurisdiction-proof", "/verify-jurisdiction-proof"),
}


def _is_transient(exc: BaseException) -> bool:
    """Connection-level failures (not timeouts, not ledger errors) are worth retrying."""
    return (
        isinstance(exc, UpstreamError)
        and not exc.timed_out
        and isinstance(exc.__cause__, httpx.TransportError)
    )


class HttpLedgerClient:
    """LedgerClient implementation backed by the ledger bridge REST API."""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float = 180.0,
        client: httpx.AsyncClient | None = None,
        read_attempts: int = 3,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._read_attempts = read_attempts
        self._client = client or httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(timeout_seconds),
            headers={"Content-Type": "application/json"},
        )
        logger.info("ledger.http_client_initialized", base_url=self._base_url, timeout=timeout_seconds)

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        json: dict | None = None,
        params: dict | None = None,
    ) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, json=json, params=params)
        except httpx.TimeoutException as exc:
            logger.warning("ledger.timeout", operation=operation, timeout=self._timeout)
            raise UpstreamError(
                f"Ledger call '{operation}' timed out after {self._timeout}s",
                operation=operation,
                timed_out=True,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("ledger.transport_error", operation=operation, error=str(exc))
            raise UpstreamError(
                f"Ledger call '{operation}' failed: {exc}",
                operation=operation,
            ) from exc

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code == 422:
            raise ValidationError(data.get("error") or f"Ledger rejected input for '{operation}'")

        if response.is_error or not data.get("success"):
            error = data.get("error") or f"HTTP {response.status_code}"
            logger.warning(
                "ledger.call_failed",
                operation=operation,
                status_code=response.status_code,
                error=error,
            )
            raise UpstreamError(f"Ledger call '{operation}' failed: {error}", operation=operation)

        return data

    async def _read(self, operation: str, path: str, params: dict | None = None) -> dict[str, Any]:
        """GET with a short retry on connection errors. Mutating calls are never retried."""
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._read_attempts),
            wait=wait_exponential(multiplier=0.5, max=5),
            retry=retry_if_exception(_is_transient),
            reraise=True,
        ):
            with attempt:
                data = await self._request(operation, "GET", path, params=params)
        return data

    # ------------------------------------------------------------------
    # Assets & notes
    # ------------------------------------------------------------------

    async def mint_asset(
        self, owner_id: str, content_ref: str, kind: str, price: int, asset_id: str
    ) -> MintResult:
        data = await self._request(
            "mint_asset",
            "POST",
            "/mint-property",
            json={
                "property_id": asset_id,
                "owner_account_id": owner_id,
                "ipfs_cid": content_ref or "",
                "property_type": PROPERTY_KIND_CODES.get(kind.lower(), 0),
                "price": int(price),
            },
        )
        return MintResult(note_id=data["note_id"], tx_id=data["transaction_id"])

    async def get_consumable_notes(self, owner_id: str) -> list[str]:
        data = await self._read(
            "get_consumable_notes",
            "/get-consumable-notes",
            params={"account_id": owner_id},
        )
        notes = []
        for note in data.get("notes", []):
            notes.append(note["note_id"] if isinstance(note, dict) else str(note))
        return notes

    async def consume_note(self, note_id: str, owner_id: str) -> str:
        data = await self._request(
            "consume_note",
            "POST",
            "/consume-note",
            json={"note_id": note_id, "account_id": owner_id},
        )
        return data["transaction_id"]

    async def transfer_property(self, property_id: str, to_owner_id: str) -> str:
        data = await self._request(
            "transfer_property",
            "POST",
            "/transfer-property",
            json={"property_id": property_id, "to_account_id": to_owner_id},
        )
        return data["transaction_id"]

    async def send_value(self, to_id: str, amount: int) -> str:
        data = await self._request(
            "send_value",
            "POST",
            "/send-tokens",
            json={"to_account_id": to_id, "amount": int(amount)},
        )
        return data["transaction_id"]

    async def get_balance(self, owner_id: str) -> int:
        data = await self._read("get_balance", f"/get-balance/{owner_id}")
        return int(data["balance"])

    # ------------------------------------------------------------------
    # Escrow
    # ------------------------------------------------------------------

    async def create_escrow(self, buyer_alias: str, seller_alias: str, amount: int) -> EscrowAccount:
        data = await self._request(
            "create_escrow",
            "POST",
            "/create-escrow",
            json={
                "buyer_account_id": buyer_alias,
                "seller_account_id": seller_alias,
                "amount": int(amount),
            },
        )
        escrow = data["escrow"]
        return EscrowAccount(
            escrow_account_id=escrow["escrow_account_id"],
            buyer_address=escrow["buyer_account_id"],
            seller_address=escrow["seller_account_id"],
            amount=int(escrow["amount"]),
            status=escrow.get("status", "created"),
        )

    async def _escrow_call(
        self,
        operation: str,
        path: str,
        escrow_id: str,
        buyer_address: str,
        seller_address: str,
        amount: int,
    ) -> str:
        data = await self._request(
            operation,
            "POST",
            path,
            json={
                "escrow_account_id": escrow_id,
                "buyer_account_id": buyer_address,
                "seller_account_id": seller_address,
                "amount": int(amount),
            },
        )
        return data["transaction_id"]

    async def fund_escrow(
        self, escrow_id: str, buyer_address: str, seller_address: str, amount: int
    ) -> str:
        return await self._escrow_call(
            "fund_escrow", "/fund-escrow", escrow_id, buyer_address, seller_address, amount
        )

    async def release_escrow(
        self, escrow_id: str, buyer_address: str, seller_address: str, amount: int
    ) -> str:
        return await self._escrow_call(
            "release_escrow", "/release-escrow", escrow_id, buyer_address, seller_address, amount
        )

    async def refund_escrow(
        self, escrow_id: str, buyer_address: str, seller_address: str, amount: int
    ) -> str:
        return await self._escrow_call(
            "refund_escrow", "/refund-escrow", escrow_id, buyer_address, seller_address, amount
        )

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
        if kind not in _PROOF_ENDPOINTS:
            raise ValidationError(f"Proof kind '{kind}' cannot be generated by the ledger", field="kind")
        generate_path, _ = _PROOF_ENDPOINTS[kind]

        if kind == "accreditation":
            body: dict[str, Any] = {"net_worth": int(private_input), "threshold": public_threshold}
        else:
            body = {"country_code": str(private_input), "restricted_countries": restricted_countries or []}

        data = await self._request("generate_proof", "POST", generate_path, json=body)
        proof = data["proof"]
        return GeneratedProof(
            kind=kind,
            proof=proof["proof"],
            program_hash=proof.get("program_hash", ""),
            public_inputs=list(proof.get("public_inputs", [])),
            threshold=public_threshold if kind == "accreditation" else None,
        )

    async def verify_proof(self, proof: GeneratedProof) -> bool:
        if proof.kind not in _PROOF_ENDPOINTS:
            raise ValidationError(f"Proof kind '{proof.kind}' cannot be verified by the ledger", field="kind")
        _, verify_path = _PROOF_ENDPOINTS[proof.kind]
        data = await self._request(
            "verify_proof",
            "POST",
            verify_path,
            json={
                "proof": proof.proof,
                "program_hash": proof.program_hash,
                "public_inputs": proof.public_inputs,
            },
        )
        return bool(data.get("valid"))
