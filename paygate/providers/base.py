"""
Abstract payment provider interface and the normalized payment model.

Every provider adapter implements ``PaymentProvider``. Optional abilities are
declared by also inheriting a capability marker:

  - ``MobilePaymentCapable`` for mobile money collection
  - ``RefundCapable`` for refunds

The orchestrator asks ``isinstance(adapter, RefundCapable)`` rather than
probing for methods.
"""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from paygate.engine.eligibility import check_eligibility
from paygate.models.enums import FailureReason, MobileMethod, ProviderId, UniversalStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PaymentItem:
    """A single line item."""

    name: str
    unit_amount: float
    quantity: int = 1
    description: Optional[str] = None

    def __post_init__(self) -> None:
        if self.unit_amount < 0:
            raise ValueError(f"unit_amount must not be negative: {self.unit_amount}")
        if self.quantity < 1:
            raise ValueError(f"quantity must be at least 1: {self.quantity}")

    @property
    def line_total(self) -> float:
        return self.unit_amount * self.quantity


def calculate_total(items: list[PaymentItem]) -> float:
    """Sum of unit_amount * quantity across items."""
    return sum(item.line_total for item in items)


@dataclass
class PaymentRequest:
    """A caller's payment intent. The total is always derived from items."""

    reference: str
    payer_email: str
    items: list[PaymentItem]
    currency: str
    description: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    payer_id: Optional[str] = None
    organization_id: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.items:
            raise ValueError("A payment request needs at least one item")
        self.currency = self.currency.upper()

    @property
    def total_amount(self) -> float:
        return calculate_total(self.items)


@dataclass(kw_only=True)
class MobilePaymentRequest(PaymentRequest):
    """Payment request collected through a mobile money wallet."""

    phone_number: str
    mobile_method: MobileMethod

    def __post_init__(self) -> None:
        super().__post_init__()
        if not isinstance(self.mobile_method, MobileMethod):
            self.mobile_method = MobileMethod(self.mobile_method)


@dataclass
class PaymentResponse:
    """Synchronous result of initiating a payment."""

    success: bool
    provider: Optional[ProviderId]  # Provider tried last; None if none was capable
    reference: str
    amount: float
    currency: str
    transaction_id: Optional[str] = None
    redirect_url: Optional[str] = None  # Web channel
    instructions: Optional[str] = None  # Mobile channel
    poll_token: Optional[str] = None
    error: Optional[str] = None
    failure_reason: Optional[FailureReason] = None


@dataclass
class PaymentStatus:
    """Reconciled view of a payment as reported by its provider."""

    reference: str
    transaction_id: str
    provider: ProviderId
    status: UniversalStatus
    amount: float
    currency: Optional[str]  # None when the provider does not echo it back
    paid_amount: Optional[float] = None
    provider_reference: Optional[str] = None
    updated_at: datetime = field(default_factory=_utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def paid(self) -> bool:
        return self.status == UniversalStatus.SUCCEEDED


@dataclass
class WebhookEvent:
    """A verified provider notification translated into universal terms."""

    provider: ProviderId
    event_type: str
    reference: str
    status: UniversalStatus
    amount: Optional[float] = None
    currency: Optional[str] = None
    transaction_id: Optional[str] = None
    raw: Any = None  # Kept verbatim for audit, never re-interpreted


@dataclass
class RawWebhook:
    """An HTTP webhook delivery exactly as received."""

    body: bytes
    headers: Mapping[str, str] = field(default_factory=dict)

    def header(self, name: str) -> Optional[str]:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


@dataclass
class TransportPolicy:
    """Outbound HTTP behaviour for an adapter."""

    timeout: float = 15.0
    max_retries: int = 2
    base_delay: float = 0.5


class PaymentProvider(ABC):
    """Abstract base class for payment provider adapters."""

    supported_currencies: frozenset[str] = frozenset()
    payment_methods: tuple[str, ...] = ()
    supported_regions: Optional[frozenset[str]] = None  # None means worldwide

    @property
    @abstractmethod
    def name(self) -> ProviderId:
        """Provider identifier."""
        ...

    @property
    def label(self) -> str:
        return self.name.value.capitalize()

    def supports_currency(self, currency: str) -> bool:
        return (currency or "").upper() in self.supported_currencies

    def serves_region(self, region: Optional[str]) -> bool:
        if region is None or self.supported_regions is None:
            return True
        return region.upper() in self.supported_regions

    @abstractmethod
    async def create_web_payment(self, request: PaymentRequest) -> PaymentResponse:
        """
        Start a browser-redirect payment.

        Must reject unsupported currencies before any network I/O and must
        return ``success=False`` rather than raise when the provider declines
        or cannot be reached.
        """
        ...

    @abstractmethod
    async def check_payment_status(self, handle: str) -> PaymentStatus:
        """
        Ask the provider for a payment's current state.

        ``handle`` is whatever the adapter handed out as poll token or
        transaction id.

        Raises:
            ProviderError: When the provider cannot be queried.
        """
        ...

    @abstractmethod
    async def handle_webhook(self, raw: RawWebhook) -> WebhookEvent:
        """
        Verify and translate a webhook delivery.

        Raises:
            InvalidSignature: Authenticity check failed.
            MalformedWebhook: Reference or status missing.
        """
        ...

    async def aclose(self) -> None:
        """Release network resources."""

    def _failure(
        self,
        request: PaymentRequest,
        error: str,
        reason: FailureReason,
    ) -> PaymentResponse:
        return PaymentResponse(
            success=False,
            provider=self.name,
            reference=request.reference,
            amount=request.total_amount,
            currency=request.currency,
            error=error,
            failure_reason=reason,
        )

    def _precheck(
        self,
        request: PaymentRequest,
        mobile_method: Optional[MobileMethod] = None,
        supported_mobile_methods: Optional[frozenset[MobileMethod]] = None,
    ) -> Optional[PaymentResponse]:
        """Return a failure response if the request must not be sent."""
        result = check_eligibility(
            provider_label=self.label,
            currency=request.currency,
            supported_currencies=self.supported_currencies,
            mobile_method=mobile_method,
            supported_mobile_methods=supported_mobile_methods,
        )
        if result.eligible:
            return None
        return self._failure(request, result.message, result.failure_reason)


class MobilePaymentCapable(ABC):
    """Marker for adapters that can collect through mobile money wallets."""

    supported_mobile_methods: frozenset[MobileMethod] = frozenset()

    @abstractmethod
    async def create_mobile_payment(self, request: MobilePaymentRequest) -> PaymentResponse:
        """Push a payment prompt to the payer's phone."""
        ...


class RefundCapable(ABC):
    """Marker for adapters that can refund settled payments."""

    @abstractmethod
    async def refund_payment(
        self,
        transaction_id: str,
        amount: Optional[float] = None,
        refund_id: Optional[str] = None,
    ) -> bool:
        """
        Refund a payment in full, or partially when ``amount`` is given.

        ``refund_id`` names this refund request. Repeating a call with the
        same id must not refund twice; distinct ids are distinct refunds.

        Returns True only if the provider reports the refund as settled.
        """
        ...
