"""SQLAlchemy 2.0 ORM models for the property settlement service.

Five tables:
    1. properties            — Minted assets, their listing and consumption state.
    2. offers                — Purchase offers, escrow references and settlement tx ids.
    3. proofs                — Verified ZK attestations held by a party (immutable).
    4. verification_history  — Append-only audit of property verification.
    5. offer_events          — Append-only audit log of every offer transition.

Design decisions:
    - Business ids (property_id, offer_id) as primary keys; UUIDs for audit rows.
    - BigInteger for prices and thresholds (ledger amounts are integral).
    - JSON columns (JSONB on PostgreSQL) for proof snapshots and country lists.
    - An explicit ``version`` column on mutable rows. Writers never read-then-
      write a status; they issue a compare-and-swap UPDATE and check rowcount.
    - CHECK constraints on status columns to reject invalid values at DB level.
    - Audit tables are append-only: no UPDATE or DELETE at the application level.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    TypeDecorator,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timezone-aware DateTime that always hands back UTC datetimes.

    SQLite drops tzinfo on the way out; comparisons against ``datetime.now(UTC)``
    would otherwise fail with naive/aware TypeErrors.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):  # noqa: ANN001, ANN201
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value

    def process_result_value(self, value, dialect):  # noqa: ANN001, ANN201
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# 1. properties
# ---------------------------------------------------------------------------
class Property(Base):
    """A minted property asset. Never physically deleted."""

    __tablename__ = "properties"

    property_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # --- Listing ---
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    kind: Mapped[str] = mapped_column(String(40), nullable=False, default="residential")
    content_ref: Mapped[str | None] = mapped_column(
        String(256),
        nullable=True,
        comment="Content-addressed reference to the (encrypted) property metadata",
    )
    price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="draft",
        comment="Listing lifecycle (guarded by ListingStateMachine)",
    )
    active_offer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # --- Ownership ---
    owner_account_id: Mapped[str] = mapped_column(String(128), nullable=False)
    owner_user_identifier: Mapped[str] = mapped_column(String(128), nullable=False)

    # --- Ledger references ---
    note_id: Mapped[str | None] = mapped_column(String(256), nullable=True)
    mint_tx_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    consume_tx_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # --- Consumption ---
    consume_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    consume_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    consume_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    consume_started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    consume_completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # --- Compliance requirements ---
    requires_accreditation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    accreditation_threshold: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    requires_jurisdiction: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    restricted_countries: Mapped[list | None] = mapped_column(JSONType, nullable=True)

    # --- Verification ---
    verification_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default="unverified"
    )
    verified_by: Mapped[str | None] = mapped_column(String(128), nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    # --- Sale ---
    sold_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    sold_to: Mapped[str | None] = mapped_column(String(128), nullable=True)
    sold_price: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    # --- Concurrency & timestamps ---
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'listed', 'offer_pending', 'sold', 'delisted')",
            name="ck_property_valid_status",
        ),
        CheckConstraint(
            "consume_status IN ('pending', 'consuming', 'consumed', 'failed')",
            name="ck_property_valid_consume_status",
        ),
        CheckConstraint(
            "verification_status IN ('unverified', 'pending', 'verified', 'rejected')",
            name="ck_property_valid_verification_status",
        ),
        CheckConstraint("price > 0", name="ck_property_positive_price"),
        CheckConstraint(
            "consume_retries >= 0",
            name="ck_property_consume_retry_bounds",
        ),
        Index("idx_property_status", "status"),
        Index("idx_property_consume_status", "consume_status"),
        Index("idx_property_owner", "owner_user_identifier"),
    )

    def __repr__(self) -> str:
        return (
            f"<Property id={self.property_id} status={self.status} "
            f"consume={self.consume_status} v{self.version}>"
        )


# ---------------------------------------------------------------------------
# 2. offers
# ---------------------------------------------------------------------------
class Offer(Base):
    """A buyer's offer on a property, through acceptance and settlement."""

    __tablename__ = "offers"

    offer_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    property_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("properties.property_id"),
        nullable=False,
    )

    # --- Parties ---
    buyer_account_id: Mapped[str] = mapped_column(String(128), nullable=False)
    buyer_user_identifier: Mapped[str] = mapped_column(String(128), nullable=False)
    seller_account_id: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        comment="Owner at offer time; settlement pays the owner at settlement time",
    )

    # --- Terms ---
    offer_price: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        comment="Offer lifecycle (guarded by OfferStateMachine)",
    )
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    verified_proofs: Mapped[list | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="Snapshot of the proofs that satisfied compliance at check time",
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # --- Buyer pre-funding ---
    buyer_funding_tx_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    buyer_funding_failed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    buyer_funding_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    buyer_funding_retried: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # --- Escrow (externally held) ---
    escrow_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    escrow_status: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
        comment="Inferred from the last successful ledger call",
    )
    escrow_funding_tx_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    escrow_refund_tx_id: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # --- Settlement ---
    settlement_claim: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="Token of the settlement attempt allowed to reach the ledger",
    )
    transfer_tx_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    release_tx_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    needs_reconciliation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # --- Concurrency & timestamps ---
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    accepted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'accepted', 'rejected', 'expired', 'completed')",
            name="ck_offer_valid_status",
        ),
        CheckConstraint(
            "escrow_status IS NULL OR escrow_status IN "
            "('created', 'funded', 'released', 'refunded')",
            name="ck_offer_valid_escrow_status",
        ),
        CheckConstraint("offer_price > 0", name="ck_offer_positive_price"),
        Index("idx_offer_property", "property_id"),
        Index("idx_offer_buyer", "buyer_user_identifier"),
        Index("idx_offer_status", "status"),
        Index("idx_offer_expires_at", "expires_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<Offer id={self.offer_id} property={self.property_id} "
            f"status={self.status} price={self.offer_price}>"
        )


# ---------------------------------------------------------------------------
# 3. proofs (immutable once verified)
# ---------------------------------------------------------------------------
class Proof(Base):
    """A ZK attestation held by a party. A new row replaces, never an update."""

    __tablename__ = "proofs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    owner_identifier: Mapped[str] = mapped_column(String(128), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    threshold: Mapped[int | None] = mapped_column(
        BigInteger,
        nullable=True,
        comment="Public threshold the proof attests to (accreditation only)",
    )
    restricted_countries: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    proof_data: Mapped[dict | None] = mapped_column(
        JSONType,
        nullable=True,
        comment="Opaque proof payload as returned by the ledger",
    )
    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        CheckConstraint(
            "type IN ('accreditation', 'jurisdiction', 'ownership')",
            name="ck_proof_valid_type",
        ),
        Index("idx_proof_owner_type", "owner_identifier", "type"),
    )

    def __repr__(self) -> str:
        return (
            f"<Proof id={self.id} owner={self.owner_identifier} type={self.type} "
            f"verified={self.verified}>"
        )


# ---------------------------------------------------------------------------
# 4. verification_history (append-only)
# ---------------------------------------------------------------------------
class VerificationHistory(Base):
    """Immutable record of a property verification transition."""

    __tablename__ = "verification_history"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    property_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("properties.property_id"),
        nullable=False,
    )
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    previous_status: Mapped[str] = mapped_column(String(20), nullable=False)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    performed_by: Mapped[str] = mapped_column(String(128), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_verification_property", "property_id"),
        Index("idx_verification_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<VerificationHistory property={self.property_id} "
            f"{self.previous_status}->{self.new_status}>"
        )


# ---------------------------------------------------------------------------
# 5. offer_events (append-only audit log)
# ---------------------------------------------------------------------------
class OfferEvent(Base):
    """Immutable audit record of every transition in an offer's lifecycle.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level. Every row represents a single event.
    """

    __tablename__ = "offer_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    offer_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("offers.offer_id"),
        nullable=False,
    )
    event_type: Mapped[str] = mapped_column(
        String(40),
        nullable=False,
        comment="EventType enum value (e.g., OFFER_ACCEPTED, PROPERTY_TRANSFERRED)",
    )
    old_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    new_status: Mapped[str] = mapped_column(String(20), nullable=False)
    actor: Mapped[str] = mapped_column(String(128), nullable=False, default="SYSTEM")
    metadata_json: Mapped[dict | None] = mapped_column(
        "metadata",
        JSONType,
        nullable=True,
        comment="Arbitrary context: tx ids, error messages, missing requirements",
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_utcnow)

    __table_args__ = (
        Index("idx_event_offer", "offer_id"),
        Index("idx_event_type", "event_type"),
        Index("idx_event_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<OfferEvent offer={self.offer_id} type={self.event_type} "
            f"{self.old_status}->{self.new_status}>"
        )
