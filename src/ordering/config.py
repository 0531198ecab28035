"""Runtime settings for the ordering service.

Settings are read from the environment (``ORDERING_*`` variables) only at the
composition roots (``app.py`` and ``server.py``). Components below them take
explicit constructor arguments.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class OrderingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="ORDERING_", extra="ignore")

    # Pricing
    allow_client_pricing_fallback: bool = Field(
        False, description="Price from client-declared amounts when the catalog is unreachable"
    )
    catalog_base_url: str = Field("http://localhost:4002", description="Base URL of the branch catalog service")
    catalog_timeout_seconds: float = Field(7.0, gt=0)
    default_currency: str = Field("VND", min_length=3, max_length=3)
    fallback_tax_rate: float = Field(7.0, ge=0)

    # Broker. The broker itself is a Protean provider configured in domain.toml
    order_events_queue: str = "order_events"
    broker_reconnect_delay_seconds: float = Field(5.0, ge=0)

    # Workers
    outbox_batch_size: int = Field(50, ge=1)
    outbox_poll_interval_seconds: float = Field(1.0, gt=0)

    @classmethod
    def from_env(cls) -> "OrderingSettings":
        return cls()
