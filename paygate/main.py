"""
Paygate: payment orchestration API.

Routes payments across Paynow and Stripe with single-step failover,
normalizes provider statuses, and reconciles provider webhooks into
persisted payment records.

Start the server:
    uvicorn paygate.main:app --reload
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from paygate.api.health import router as health_router
from paygate.api.payments import router as payments_router
from paygate.api.webhooks import router as webhooks_router
from paygate.config import settings
from paygate.database import dispose_db, init_db
from paygate.engine.orchestrator import PaymentOrchestrator
from paygate.engine.reconciler import ActivationHook

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


def create_app(
    orchestrator: Optional[PaymentOrchestrator] = None,
    activation_hook: Optional[ActivationHook] = None,
) -> FastAPI:
    """
    Build the API.

    Without an orchestrator one is built from settings at startup, which
    fails fast if an enabled provider is missing credentials or none is
    enabled.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_db()
        owned = app.state.orchestrator is None
        if owned:
            app.state.orchestrator = PaymentOrchestrator.from_settings(settings)
        yield
        if owned:
            await app.state.orchestrator.aclose()
            app.state.orchestrator = None
        await dispose_db()

    app = FastAPI(
        title="Paygate",
        description=(
            "Payment orchestration core: provider routing with failover, a universal "
            "payment status model, and signature-verified webhook reconciliation."
        ),
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator
    app.state.activation_hook = activation_hook

    app.include_router(health_router)
    app.include_router(payments_router, prefix="/api")
    app.include_router(webhooks_router, prefix="/api")
    return app


app = create_app()
