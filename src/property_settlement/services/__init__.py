"""Application services — use case orchestration."""

from property_settlement.services.compliance_service import ComplianceGate
from property_settlement.services.consumption_worker import ConsumptionWorker
from property_settlement.services.escrow_coordinator import AccountDirectory, EscrowCoordinator
from property_settlement.services.offer_service import OfferService
from property_settlement.services.property_service import PropertyService
from property_settlement.services.proof_service import ProofService
from property_settlement.services.settlement_service import SettlementOrchestrator, SettlementResult

__all__ = [
    "AccountDirectory",
    "ComplianceGate",
    "ConsumptionWorker",
    "EscrowCoordinator",
    "OfferService",
    "PropertyService",
    "ProofService",
    "SettlementOrchestrator",
    "SettlementResult",
]
