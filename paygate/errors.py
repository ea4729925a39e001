"""
Exceptions that signal configuration or integrity problems.

A single payment's outcome is never reported through these: adapters return
``PaymentResponse(success=False, ...)`` for that. What lands here cannot be
fixed per request (no provider enabled, missing credentials) or must stop
processing outright (a webhook that fails authentication).
"""


class PaygateError(Exception):
    """Base exception for the payment orchestration core."""


class ConfigurationError(PaygateError):
    """Required credentials or settings are missing or inconsistent."""


class InvalidSignature(PaygateError):
    """A webhook failed authenticity verification."""


class MalformedWebhook(PaygateError):
    """A webhook body is missing the fields needed to identify the payment."""


class NoProviderAvailable(PaygateError):
    """No enabled provider can serve the request."""


class StatusUnavailable(PaygateError):
    """Every candidate provider failed to report a payment's status."""

    def __init__(self, handle: str, message: str = "Payment status temporarily unavailable"):
        super().__init__(f"{message} ({handle})")
        self.handle = handle


class RefundUnsupported(PaygateError):
    """The resolved provider cannot issue refunds."""
