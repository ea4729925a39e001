"""Payment reference generation."""

import secrets
import string
import time

_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits
SUFFIX_LENGTH = 6


def generate_payment_reference(prefix: str = "PAY") -> str:
    """
    Build a reference like ``PAY-1718035200123-K7Q2ZB``.

    Millisecond timestamp plus a random suffix drawn from ``secrets``, so two
    callers in the same millisecond still get distinct values. Safe to use as
    a lookup and provider idempotency key.
    """
    timestamp = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(SUFFIX_LENGTH))
    return f"{prefix}-{timestamp}-{suffix}"
