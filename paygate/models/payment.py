"""SQLAlchemy models for persisted payment state."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex[:12]


class Payment(Base):
    """
    A payment record keyed by caller reference.

    Created in ``pending`` with the computed total when a payment is
    initiated. Status changes go through compare-and-set updates in
    ``SqlPaymentStore.transition_status`` so a terminal state written by one
    request is never overwritten by a late event from another.
    """

    __tablename__ = "payments"

    id = Column(String(12), primary_key=True, default=_new_id)
    reference = Column(String(120), nullable=False, unique=True, index=True)
    transaction_id = Column(String(255), nullable=True, unique=True, index=True)
    poll_token = Column(String(500), nullable=True)
    provider = Column(String(20), nullable=True)  # ProviderId value

    # Caller identity
    user_id = Column(String(100), nullable=True)
    organization_id = Column(String(100), nullable=True, index=True)
    payer_email = Column(String(255), nullable=True)

    amount = Column(Float, nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    items = Column(Text, nullable=True)  # JSON list of line items
    description = Column(Text, nullable=True)

    # Mobile money
    phone_number = Column(String(30), nullable=True)
    mobile_method = Column(String(20), nullable=True)

    # Initiation result
    redirect_url = Column(String(1000), nullable=True)
    instructions = Column(Text, nullable=True)
    failure_reason = Column(String(50), nullable=True)

    # Reconciled state
    status = Column(String(20), nullable=False, default="pending")
    paid_amount = Column(Float, nullable=True)
    refunded_amount = Column(Float, nullable=False, default=0.0)
    provider_reference = Column(String(255), nullable=True)
    activated_at = Column(DateTime(timezone=True), nullable=True)
    last_event_at = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class WebhookLog(Base):
    """
    Every webhook delivery, accepted or not.

    ``raw_data`` holds the payload exactly as received so rejected deliveries
    (bad signature, malformed body) can still be inspected.
    """

    __tablename__ = "webhook_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider = Column(String(20), nullable=False)
    event_type = Column(String(100), nullable=True)
    reference = Column(String(120), nullable=True, index=True)
    transaction_id = Column(String(255), nullable=True)
    status = Column(String(20), nullable=True)
    amount = Column(Float, nullable=True)
    currency = Column(String(3), nullable=True)
    outcome = Column(String(30), nullable=False)
    error = Column(Text, nullable=True)
    raw_data = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class AuditLog(Base):
    """
    Immutable audit trail entry.

    Initiation results, status transitions, refunds and activations each get
    an append-only entry.
    """

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    payment_reference = Column(String(120), nullable=True, index=True)
    action = Column(String(50), nullable=False)
    details = Column(Text, nullable=True)
    timestamp = Column(DateTime(timezone=True), default=_utcnow)
