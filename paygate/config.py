"""Application configuration via environment variables."""

from typing import Optional

from pydantic_settings import BaseSettings

from paygate.models.enums import ProviderId


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./paygate.db"
    log_level: str = "INFO"
    site_url: str = "http://localhost:8000"

    # Paynow (Zimbabwe)
    paynow_enabled: bool = False
    paynow_integration_id: str = ""
    paynow_integration_key: str = ""
    paynow_result_url: Optional[str] = None  # Defaults to {site_url}/api/webhooks/paynow
    paynow_return_url: Optional[str] = None  # Defaults to {site_url}/payment/return

    # Stripe
    stripe_enabled: bool = False
    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""

    # Routing
    primary_payment_provider: ProviderId = ProviderId.PAYNOW
    fallback_payment_provider: ProviderId = ProviderId.STRIPE
    default_currency: str = "USD"

    # Outbound HTTP
    provider_timeout_seconds: float = 15.0
    transport_max_retries: int = 2
    retry_base_delay: float = 0.5

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def resolved_paynow_result_url(self) -> str:
        return self.paynow_result_url or f"{self.site_url.rstrip('/')}/api/webhooks/paynow"

    @property
    def resolved_paynow_return_url(self) -> str:
        return self.paynow_return_url or f"{self.site_url.rstrip('/')}/payment/return"

    @property
    def stripe_success_url(self) -> str:
        return f"{self.site_url.rstrip('/')}/payment/success?session_id={{CHECKOUT_SESSION_ID}}"

    @property
    def stripe_cancel_url(self) -> str:
        return f"{self.site_url.rstrip('/')}/payment/cancelled"


settings = Settings()
