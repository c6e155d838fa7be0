# packages/quant_lib/config/providers.py

from typing import List, Optional
from pydantic import Field, computed_field
from pydantic_settings import SettingsConfigDict
from .base import EnvConfig


class ProvidersConfig(EnvConfig):
    # Priority order of the real sources. "synthetic" is always appended last.
    order: str = "yfinance,alpaca,alpha_vantage"

    # Timeout for a single provider request.
    timeout_seconds: float = 15.0

    # Worker threads per blocking source (yfinance, alpaca).
    thread_workers: int = Field(default=8, ge=1)

    # We ask for ~300 bars but accept anything that clears the classifier minimum.
    target_bars: int = 300
    min_accept_bars: int = 200

    # Alpha Vantage free tier: 5 requests per minute -> one call every 12s.
    alpha_vantage_api_key: Optional[str] = None
    alpha_vantage_spacing_seconds: float = 12.0

    # Alpaca only serves US venues. Free tier is 200 requests per minute.
    alpaca_api_key: Optional[str] = None
    alpaca_secret_key: Optional[str] = None
    alpaca_requests_per_minute: int = 200

    # Synthetic fallback
    synthetic_drift: float = 0.0005  # +0.05% per day
    synthetic_seed: Optional[int] = None

    @computed_field
    @property
    def order_list(self) -> List[str]:
        if not self.order:
            return []
        return [p.strip().lower() for p in self.order.split(",") if p.strip()]

    model_config = SettingsConfigDict(
        env_prefix="PROVIDERS_",  # Looks for PROVIDERS_TIMEOUT_SECONDS, etc.
        case_sensitive=False,
        extra="ignore",
    )
