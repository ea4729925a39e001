from paygate.routing.provider_selector import ProviderDecision, infer_provider, select_provider
from paygate.routing.status_mapper import is_paid, is_refundable, is_terminal, map_status
from paygate.routing.status_tables import STATUS_TABLES

__all__ = [
    "STATUS_TABLES",
    "ProviderDecision",
    "infer_provider",
    "is_paid",
    "is_refundable",
    "is_terminal",
    "map_status",
    "select_provider",
]
