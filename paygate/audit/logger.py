"""
Append-only audit trail for payment records.

Each entry carries:
  - Payment reference (which record it concerns)
  - Action (initiated, status_changed, refund_recorded, activated, ...)
  - Details (previous/new status, provider, error messages)
  - Timestamp (UTC)

Entries are only ever inserted. Every entry is mirrored to the
``paygate.audit`` logger.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from paygate.models.payment import AuditLog

logger = logging.getLogger("paygate.audit")


def _dumps(details: Optional[dict[str, Any]]) -> Optional[str]:
    return json.dumps(details, default=str) if details else None


async def log_event(
    session: AsyncSession,
    action: str,
    payment_reference: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> AuditLog:
    """
    Add an audit entry to the session. The caller commits.

    Args:
        session: Database session.
        action: What happened (e.g. "initiated", "status_changed", "activated").
        payment_reference: The payment this entry relates to.
        details: Arbitrary context, serialized to JSON.
    """
    serialized = _dumps(details)
    entry = AuditLog(
        payment_reference=payment_reference,
        action=action,
        details=serialized,
        timestamp=datetime.now(timezone.utc),
    )
    session.add(entry)
    logger.info(
        "AUDIT | payment=%s action=%s | %s",
        payment_reference or "-",
        action,
        serialized[:200] if serialized else "",
    )
    return entry


def append_note(existing_notes: Optional[str], message: str) -> str:
    """Append a timestamped line to a payment's running notes."""
    line = f"[{datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M UTC')}] {message}"
    if not existing_notes:
        return line
    return f"{existing_notes}\n{line}"
