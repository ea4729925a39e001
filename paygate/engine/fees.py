"""Provider fee estimates: ``max(amount * percentage + fixed, minimum)``."""

from dataclasses import dataclass

from paygate.models.enums import ProviderId


@dataclass(frozen=True)
class FeeStructure:
    percentage: float
    fixed: float
    minimum: float


FEE_STRUCTURES: dict[ProviderId, FeeStructure] = {
    ProviderId.PAYNOW: FeeStructure(percentage=0.035, fixed=0.50, minimum=0.10),
    ProviderId.STRIPE: FeeStructure(percentage=0.029, fixed=0.30, minimum=0.05),
}


def calculate_fees(amount: float, provider: ProviderId) -> float:
    """Estimate the provider's processing fee for a payment amount."""
    if amount < 0:
        raise ValueError(f"Amount must not be negative: {amount}")
    structure = FEE_STRUCTURES[provider]
    return max(amount * structure.percentage + structure.fixed, structure.minimum)
