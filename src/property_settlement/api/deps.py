"""FastAPI dependency injection providers.

These are used with Depends() in route handlers to inject the services,
Redis-backed idempotency, and configuration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Depends, Header

from property_settlement.config import Settings, get_settings
from property_settlement.domain.exceptions import DuplicateOperationError
from property_settlement.infrastructure.redis_client import (
    claim_idempotency,
    redis_available,
    release_idempotency,
)
from property_settlement.logging_config import get_logger
from property_settlement.runtime import SettlementRuntime, get_runtime

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from property_settlement.services.consumption_worker import ConsumptionWorker
    from property_settlement.services.offer_service import OfferService
    from property_settlement.services.property_service import PropertyService
    from property_settlement.services.proof_service import ProofService
    from property_settlement.services.settlement_service import SettlementOrchestrator

logger = get_logger(__name__)


def get_app_runtime() -> SettlementRuntime:
    """Provide the process-wide runtime."""
    return get_runtime()


def get_property_service(
    runtime: SettlementRuntime = Depends(get_app_runtime),
) -> PropertyService:
    return runtime.properties()


def get_proof_service(runtime: SettlementRuntime = Depends(get_app_runtime)) -> ProofService:
    return runtime.proofs()


def get_offer_service(runtime: SettlementRuntime = Depends(get_app_runtime)) -> OfferService:
    return runtime.offers()


def get_settlement_service(
    runtime: SettlementRuntime = Depends(get_app_runtime),
) -> SettlementOrchestrator:
    return runtime.settlement()


def get_consumption_worker(
    runtime: SettlementRuntime = Depends(get_app_runtime),
) -> ConsumptionWorker:
    return runtime.worker


class IdempotencyGuard:
    """Claims the request's ``Idempotency-Key`` for one scope.

    A replayed key is rejected with DuplicateOperationError. If the handler
    fails with a domain error the key is released so the caller may retry.
    Without the header, or without Redis, requests pass through unguarded.
    """

    def __init__(self, scope: str) -> None:
        self.scope = scope

    async def __call__(
        self,
        idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    ) -> AsyncGenerator[str | None, None]:
        if not idempotency_key:
            yield None
            return
        if not redis_available():
            logger.warning("idempotency.redis_unavailable", scope=self.scope)
            yield idempotency_key
            return

        if not await claim_idempotency(self.scope, idempotency_key):
            raise DuplicateOperationError(idempotency_key)
        try:
            yield idempotency_key
        except Exception:
            await release_idempotency(self.scope, idempotency_key)
            raise


def get_app_settings() -> Settings:
    """Provide the application settings."""
    return get_settings()
