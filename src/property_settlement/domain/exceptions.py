"""Domain exceptions for the property settlement service.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.
Every exception carries a machine-readable ``code`` and a ``reason`` category
(validation, compliance, conflict, not_found, upstream, inconsistency).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from property_settlement.domain.enums import ReasonCode

if TYPE_CHECKING:
    from property_settlement.domain.compliance import ProofRequirement


class SettlementServiceError(Exception):
    """Base exception for all domain errors."""

    reason: ReasonCode = ReasonCode.VALIDATION

    def __init__(
        self,
        message: str,
        code: str = "SETTLEMENT_SERVICE_ERROR",
        details: dict | None = None,
    ) -> None:
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "reason": self.reason.value,
            "message": self.message,
            "details": self.details,
        }


# --- Validation ---


class ValidationError(SettlementServiceError):
    """Missing or malformed input. Never retried."""

    reason = ReasonCode.VALIDATION

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details={"field": field} if field else None,
        )
        self.field = field


# --- Compliance ---


class ComplianceError(SettlementServiceError):
    """The buyer's proofs do not satisfy the property's requirements.

    Carries the full list of unmet requirements so the caller can see
    exactly which proof is missing, expired or below threshold.
    """

    reason = ReasonCode.COMPLIANCE

    def __init__(self, missing: list[ProofRequirement], stage: str = "offer") -> None:
        summary = ", ".join(f"{m.type.value}: {m.reason.value}" for m in missing)
        super().__init__(
            message=f"Compliance requirements not met at {stage}: {summary}",
            code="COMPLIANCE_REQUIREMENTS_NOT_MET",
            details={"stage": stage, "missing": [m.to_dict() for m in missing]},
        )
        self.missing = missing
        self.stage = stage


# --- Not found ---


class NotFoundError(SettlementServiceError):
    """Raised when an entity id does not exist."""

    reason = ReasonCode.NOT_FOUND

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(
            message=f"{entity.capitalize()} not found: {entity_id}",
            code=f"{entity.upper()}_NOT_FOUND",
            details={"entity": entity, "id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


class PropertyNotFoundError(NotFoundError):
    def __init__(self, property_id: str) -> None:
        super().__init__("property", property_id)


class OfferNotFoundError(NotFoundError):
    def __init__(self, offer_id: str) -> None:
        super().__init__("offer", offer_id)


# --- Conflict ---


class ConflictError(SettlementServiceError):
    """Wrong entity state for the requested transition. Not retried."""

    reason = ReasonCode.CONFLICT

    def __init__(
        self,
        message: str,
        code: str = "CONFLICT",
        details: dict | None = None,
    ) -> None:
        super().__init__(message=message, code=code, details=details)


class InvalidStateTransitionError(ConflictError):
    """Raised when a state machine rejects a transition.

    Example: an offer in 'rejected' cannot be accepted.
    """

    def __init__(self, machine: str, current_state: str, attempted: str) -> None:
        super().__init__(
            message=f"Invalid {machine} transition: {current_state} -> {attempted}",
            code="INVALID_STATE_TRANSITION",
            details={"machine": machine, "current": current_state, "attempted": attempted},
        )
        self.machine = machine
        self.current_state = current_state
        self.attempted_state = attempted


class StaleWriteError(ConflictError):
    """A compare-and-swap update matched no row: someone else won the race."""

    def __init__(self, entity: str, entity_id: str, expected: str) -> None:
        super().__init__(
            message=f"{entity.capitalize()} {entity_id} changed concurrently "
            f"(expected status '{expected}')",
            code="STALE_WRITE",
            details={"entity": entity, "id": entity_id, "expected_status": expected},
        )


class DuplicateOperationError(ConflictError):
    """Raised when a duplicate idempotency key is detected."""

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            message=f"Duplicate operation detected for key: {idempotency_key}",
            code="DUPLICATE_OPERATION",
        )


# --- Upstream ---


class UpstreamError(SettlementServiceError):
    """A LedgerClient call failed or timed out."""

    reason = ReasonCode.UPSTREAM

    def __init__(
        self,
        message: str,
        operation: str,
        timed_out: bool = False,
    ) -> None:
        super().__init__(
            message=message,
            code="LEDGER_TIMEOUT" if timed_out else "LEDGER_ERROR",
            details={"operation": operation, "timed_out": timed_out},
        )
        self.operation = operation
        self.timed_out = timed_out


class FundingError(UpstreamError):
    """Buyer pre-funding failed twice; acceptance is aborted before escrow."""

    def __init__(self, offer_id: str, error: str) -> None:
        super().__init__(
            message=f"Buyer funding failed for offer {offer_id} after retry: {error}",
            operation="send_value",
        )
        self.code = "BUYER_FUNDING_FAILED"
        self.details["offer_id"] = offer_id


# --- Inconsistency ---


class LedgerInconsistencyError(SettlementServiceError):
    """The property moved on the ledger but the escrow release failed.

    The buyer owns the asset and the seller is unpaid. This is never
    retried automatically; it requires manual reconciliation.
    """

    reason = ReasonCode.INCONSISTENCY

    def __init__(self, offer_id: str, transfer_tx_id: str, error: str) -> None:
        super().__init__(
            message=(
                f"Settlement {offer_id} is inconsistent: property transferred "
                f"(tx {transfer_tx_id}) but escrow release failed: {error}"
            ),
            code="SETTLEMENT_INCONSISTENT",
            details={
                "offer_id": offer_id,
                "transfer_tx_id": transfer_tx_id,
                "release_error": error,
                "requires_manual_reconciliation": True,
            },
        )
        self.offer_id = offer_id
        self.transfer_tx_id = transfer_tx_id
