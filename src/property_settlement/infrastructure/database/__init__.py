"""Database infrastructure — engine, ORM models, and repositories."""

from property_settlement.infrastructure.database.engine import (
    close_db,
    get_session_factory,
    init_db,
)
from property_settlement.infrastructure.database.orm_models import (
    Base,
    Offer,
    OfferEvent,
    Property,
    Proof,
    VerificationHistory,
)
from property_settlement.infrastructure.database.repositories import (
    EventRepository,
    OfferRepository,
    PropertyRepository,
    ProofRepository,
    VerificationHistoryRepository,
)

__all__ = [
    "Base",
    "Offer",
    "OfferEvent",
    "Property",
    "Proof",
    "VerificationHistory",
    "EventRepository",
    "OfferRepository",
    "PropertyRepository",
    "ProofRepository",
    "VerificationHistoryRepository",
    "get_session_factory",
    "init_db",
    "close_db",
]
