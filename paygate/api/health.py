"""Liveness endpoint."""

from fastapi import APIRouter, Depends

from paygate.api.deps import get_orchestrator
from paygate.engine.orchestrator import PaymentOrchestrator

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(orchestrator: PaymentOrchestrator = Depends(get_orchestrator)):
    return {
        "status": "ok",
        "providers": [provider.value for provider in orchestrator.enabled_providers],
        "primary": orchestrator.primary.value,
    }
