"""Domain layer — pure business logic with zero framework dependencies."""

from property_settlement.domain.compliance import (
    ComplianceRequirements,
    EligibilityResult,
    ProofRequirement,
    evaluate_requirements,
)
from property_settlement.domain.enums import (
    ConsumeStatus,
    EscrowStatus,
    EventType,
    OfferStatus,
    PropertyStatus,
    ProofType,
    VerificationStatus,
)
from property_settlement.domain.exceptions import (
    ComplianceError,
    ConflictError,
    InvalidStateTransitionError,
    LedgerInconsistencyError,
    SettlementServiceError,
    UpstreamError,
    ValidationError,
)
from property_settlement.domain.ledger_protocol import LedgerClient
from property_settlement.domain.state_machine import (
    OfferStateMachine,
    validate_transition,
)

__all__ = [
    "ComplianceRequirements",
    "EligibilityResult",
    "ProofRequirement",
    "evaluate_requirements",
    "ConsumeStatus",
    "EscrowStatus",
    "EventType",
    "OfferStatus",
    "PropertyStatus",
    "ProofType",
    "VerificationStatus",
    "ComplianceError",
    "ConflictError",
    "InvalidStateTransitionError",
    "LedgerInconsistencyError",
    "SettlementServiceError",
    "UpstreamError",
    "ValidationError",
    "LedgerClient",
    "OfferStateMachine",
    "validate_transition",
]
