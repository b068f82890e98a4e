"""Domain enumerations for the property settlement service.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

import enum


class PropertyStatus(enum.StrEnum):
    """Listing lifecycle of a property.

    Properties are never deleted; DELISTED and SOLD are soft end states.
    """

    DRAFT = "draft"
    LISTED = "listed"
    OFFER_PENDING = "offer_pending"
    SOLD = "sold"
    DELISTED = "delisted"


class ConsumeStatus(enum.StrEnum):
    """State of the background consumption of a property's minted note."""

    PENDING = "pending"
    CONSUMING = "consuming"
    CONSUMED = "consumed"
    FAILED = "failed"


class VerificationStatus(enum.StrEnum):
    """Administrative verification of a property's ownership documents."""

    UNVERIFIED = "unverified"
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class OfferStatus(enum.StrEnum):
    """Lifecycle states of an offer.

    pending -> {accepted, rejected, expired}; accepted -> completed.
    See domain/state_machine.py for the transition table.
    """

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"
    COMPLETED = "completed"


class EscrowStatus(enum.StrEnum):
    """Locally inferred status of the ledger-held escrow account.

    The ledger owns this state. The value here only reflects the last
    ledger call that succeeded.
    """

    CREATED = "created"
    FUNDED = "funded"
    RELEASED = "released"
    REFUNDED = "refunded"


class ProofType(enum.StrEnum):
    """Kinds of zero-knowledge attestations a party can hold."""

    ACCREDITATION = "accreditation"
    JURISDICTION = "jurisdiction"
    OWNERSHIP = "ownership"


class RequirementFailure(enum.StrEnum):
    """Why a compliance requirement is unmet."""

    MISSING = "missing"
    EXPIRED = "expired"
    THRESHOLD_TOO_LOW = "threshold_too_low"
    RESTRICTED_LIST_MISMATCH = "restricted_list_mismatch"


class ReasonCode(enum.StrEnum):
    """Failure categories surfaced to callers of the service."""

    VALIDATION = "validation"
    COMPLIANCE = "compliance"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    UPSTREAM = "upstream"
    INCONSISTENCY = "inconsistency"


class VerificationAction(enum.StrEnum):
    """Actions recorded in the verification history."""

    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"


class EventType(enum.StrEnum):
    """Types of audit events recorded in the offer_events table.

    Every offer state transition MUST produce exactly one event.
    """

    # Offer lifecycle
    OFFER_CREATED = "OFFER_CREATED"
    BUYER_PREFUNDED = "BUYER_PREFUNDED"
    BUYER_PREFUND_FAILED = "BUYER_PREFUND_FAILED"
    OFFER_ACCEPTED = "OFFER_ACCEPTED"
    OFFER_REJECTED = "OFFER_REJECTED"
    OFFER_EXPIRED = "OFFER_EXPIRED"

    # Escrow
    ESCROW_CREATED = "ESCROW_CREATED"
    ESCROW_FUNDED = "ESCROW_FUNDED"
    ESCROW_REFUNDED = "ESCROW_REFUNDED"

    # Settlement
    SETTLEMENT_STARTED = "SETTLEMENT_STARTED"
    PROPERTY_TRANSFERRED = "PROPERTY_TRANSFERRED"
    ESCROW_RELEASED = "ESCROW_RELEASED"
    SETTLEMENT_COMPLETED = "SETTLEMENT_COMPLETED"
    SETTLEMENT_ABORTED = "SETTLEMENT_ABORTED"
    SETTLEMENT_INCONSISTENT = "SETTLEMENT_INCONSISTENT"
