"""Pydantic API schemas."""

from property_settlement.schemas.offer import (
    AcceptOfferRequest,
    CreateOfferRequest,
    ExecuteSettlementRequest,
    ExpireOffersResponse,
    OfferEventResponse,
    OfferResponse,
    OfferStatusResponse,
    RefundEscrowRequest,
    RejectOfferRequest,
    SettlementReadinessResponse,
    SettlementRecordResponse,
    SettlementResultResponse,
)
from property_settlement.schemas.proof import HealthResponse, IssueProofRequest, ProofResponse
from property_settlement.schemas.property import (
    ConsumptionStatusResponse,
    ListPropertyRequest,
    MintPropertyRequest,
    PropertyResponse,
    VerificationActionRequest,
    VerificationHistoryResponse,
)

__all__ = [
    "AcceptOfferRequest",
    "ConsumptionStatusResponse",
    "CreateOfferRequest",
    "ExecuteSettlementRequest",
    "ExpireOffersResponse",
    "HealthResponse",
    "IssueProofRequest",
    "ListPropertyRequest",
    "MintPropertyRequest",
    "OfferEventResponse",
    "OfferResponse",
    "OfferStatusResponse",
    "ProofResponse",
    "PropertyResponse",
    "RefundEscrowRequest",
    "RejectOfferRequest",
    "SettlementReadinessResponse",
    "SettlementRecordResponse",
    "SettlementResultResponse",
    "VerificationActionRequest",
    "VerificationHistoryResponse",
]
