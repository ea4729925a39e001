"""
Request-scoped dependencies.

The orchestrator is built once at startup and lives on ``app.state``. The
store and reconciler wrap the per-request database session. Caller identity
comes from headers set by the upstream authenticator.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from paygate.database import get_session
from paygate.engine.orchestrator import PaymentOrchestrator
from paygate.engine.reconciler import WebhookReconciler
from paygate.store import SqlPaymentStore


@dataclass
class CallerIdentity:
    id: str
    email: Optional[str] = None
    organization_id: Optional[str] = None

    @property
    def tenant(self) -> str:
        """Organization the caller acts for; users without one act for themselves."""
        return self.organization_id or self.id


def get_orchestrator(request: Request) -> PaymentOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Payment providers not initialised")
    return orchestrator


async def get_store(session: AsyncSession = Depends(get_session)) -> SqlPaymentStore:
    return SqlPaymentStore(session)


async def get_reconciler(
    request: Request,
    store: SqlPaymentStore = Depends(get_store),
) -> WebhookReconciler:
    return WebhookReconciler(store, activation_hook=getattr(request.app.state, "activation_hook", None))


async def get_caller(
    x_user_id: Optional[str] = Header(None),
    x_user_email: Optional[str] = Header(None),
    x_organization_id: Optional[str] = Header(None),
) -> CallerIdentity:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return CallerIdentity(id=x_user_id, email=x_user_email, organization_id=x_organization_id)
