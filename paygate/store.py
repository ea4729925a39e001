"""
Persistence contract for payment records, and its SQLAlchemy implementation.

The orchestration core only talks to ``PaymentStore``. Status changes go
through ``transition_status``, a compare-and-set on the previous status: the
UPDATE only matches while the row still holds the status the caller read, so
two concurrent writers can never both move the same record.
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from paygate.audit.logger import log_event
from paygate.models.enums import ProviderId, ReconcileOutcome, UniversalStatus
from paygate.models.payment import AuditLog, Payment, WebhookLog
from paygate.providers.base import WebhookEvent

logger = logging.getLogger("paygate.store")


def _value(v: Any) -> Any:
    return v.value if hasattr(v, "value") else v


class PaymentStore(ABC):
    """Where payment records, webhook deliveries and audit entries live."""

    @abstractmethod
    async def create_payment_record(self, reference: str, **fields: Any) -> Payment:
        """Insert a record, or update the one already holding ``reference``."""

    @abstractmethod
    async def get_payment_record(self, key: str) -> Optional[Payment]:
        """Look a record up by reference, then by transaction id."""

    @abstractmethod
    async def update_payment_record(self, key: str, **fields: Any) -> Optional[Payment]:
        """Overwrite non-status fields. Returns None when no record matches."""

    @abstractmethod
    async def transition_status(
        self,
        reference: str,
        expected: UniversalStatus,
        new: UniversalStatus,
        match: Optional[dict[str, Any]] = None,
        **fields: Any,
    ) -> bool:
        """
        Move ``expected`` to ``new`` atomically. False if the record had moved on.

        ``match`` adds column values that must also be unchanged for the write
        to land.
        """

    @abstractmethod
    async def log_webhook(
        self,
        provider: ProviderId,
        outcome: ReconcileOutcome,
        event: Optional[WebhookEvent] = None,
        raw_data: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        ...

    @abstractmethod
    async def record_audit(
        self,
        action: str,
        payment_reference: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        ...


class SqlPaymentStore(PaymentStore):
    """PaymentStore over a SQLAlchemy async session. Every write commits."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_payment_record(self, reference: str, **fields: Any) -> Payment:
        record = await self._by_reference(reference)
        values = {k: _value(v) for k, v in fields.items()}
        if record is None:
            record = Payment(reference=reference, **values)
            self.session.add(record)
        else:
            for key, value in values.items():
                setattr(record, key, value)
        await self.session.commit()
        return record

    async def get_payment_record(self, key: str) -> Optional[Payment]:
        if not key:
            return None
        result = await self.session.execute(
            select(Payment)
            .where(or_(Payment.reference == key, Payment.transaction_id == key))
            .order_by((Payment.reference == key).desc())
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def update_payment_record(self, key: str, **fields: Any) -> Optional[Payment]:
        record = await self.get_payment_record(key)
        if record is None:
            return None
        for name, value in fields.items():
            setattr(record, name, _value(value))
        await self.session.commit()
        return record

    async def transition_status(
        self,
        reference: str,
        expected: UniversalStatus,
        new: UniversalStatus,
        match: Optional[dict[str, Any]] = None,
        **fields: Any,
    ) -> bool:
        values = {k: _value(v) for k, v in fields.items()}
        values["status"] = new.value
        values["updated_at"] = datetime.now(timezone.utc)
        guards = [getattr(Payment, name) == _value(value) for name, value in (match or {}).items()]

        result = await self.session.execute(
            update(Payment)
            .where(Payment.reference == reference, Payment.status == expected.value, *guards)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()

        if result.rowcount != 1:
            logger.info(
                "Status CAS lost for %s (expected %s -> %s)",
                reference,
                expected.value,
                new.value,
            )
            return False
        return True

    async def log_webhook(
        self,
        provider: ProviderId,
        outcome: ReconcileOutcome,
        event: Optional[WebhookEvent] = None,
        raw_data: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        entry = WebhookLog(
            provider=_value(provider),
            outcome=_value(outcome),
            error=error,
            raw_data=raw_data,
        )
        if event is not None:
            entry.event_type = event.event_type
            entry.reference = event.reference
            entry.transaction_id = event.transaction_id
            entry.status = event.status.value
            entry.amount = event.amount
            entry.currency = event.currency
            if raw_data is None:
                entry.raw_data = json.dumps(event.raw, default=str)
        self.session.add(entry)
        await self.session.commit()

    async def record_audit(
        self,
        action: str,
        payment_reference: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        await log_event(self.session, action, payment_reference=payment_reference, details=details)
        await self.session.commit()

    # ─── Read helpers for the trace endpoint ───────────────────────────

    async def list_audit(self, reference: str) -> list[AuditLog]:
        result = await self.session.execute(
            select(AuditLog)
            .where(AuditLog.payment_reference == reference)
            .order_by(AuditLog.timestamp.asc(), AuditLog.id.asc())
        )
        return list(result.scalars().all())

    async def list_webhooks(self, reference: str) -> list[WebhookLog]:
        result = await self.session.execute(
            select(WebhookLog)
            .where(WebhookLog.reference == reference)
            .order_by(WebhookLog.created_at.asc(), WebhookLog.id.asc())
        )
        return list(result.scalars().all())

    async def _by_reference(self, reference: str) -> Optional[Payment]:
        result = await self.session.execute(
            select(Payment)
            .where(Payment.reference == reference)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()
