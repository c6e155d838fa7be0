# apps/scanner_worker/sources/factory.py

from packages.quant_lib.config import Settings
from packages.quant_lib.interfaces import DataSource
from packages.quant_lib.logging import LogManager
from .alpaca import AlpacaSource
from .alpha_vantage import AlphaVantageSource
from .chain import ProviderChain
from .synthetic import SyntheticSource
from .yfinance_source import YFinanceSource


def get_data_source(source_name: str, settings: Settings, log_manager: LogManager) -> DataSource:
    """Factory to instantiate one real data source by name."""
    cfg = settings.providers

    if source_name == "yfinance":
        return YFinanceSource(
            logger=log_manager.get_logger("yfinance-source"),
            timeout_seconds=cfg.timeout_seconds,
            target_bars=cfg.target_bars,
            max_workers=cfg.thread_workers,
        )

    elif source_name == "alpaca":
        return AlpacaSource(
            api_key=cfg.alpaca_api_key,
            secret_key=cfg.alpaca_secret_key,
            logger=log_manager.get_logger("alpaca-source"),
            timeout_seconds=cfg.timeout_seconds,
            target_bars=cfg.target_bars,
            requests_per_minute=cfg.alpaca_requests_per_minute,
            max_workers=cfg.thread_workers,
        )

    elif source_name == "alpha_vantage":
        return AlphaVantageSource(
            api_key=cfg.alpha_vantage_api_key,
            logger=log_manager.get_logger("alpha-vantage-source"),
            timeout_seconds=cfg.timeout_seconds,
            target_bars=cfg.target_bars,
            spacing_seconds=cfg.alpha_vantage_spacing_seconds,
        )

    else:
        raise ValueError(f"Unknown data source: {source_name}")


def build_provider_chain(settings: Settings, log_manager: LogManager) -> ProviderChain:
    """Real sources in configured priority order, synthetic generator last."""
    cfg = settings.providers

    sources = [
        get_data_source(name, settings, log_manager)
        for name in cfg.order_list
        if name != SyntheticSource.name
    ]
    fallback = SyntheticSource(
        target_bars=cfg.target_bars,
        drift=cfg.synthetic_drift,
        seed=cfg.synthetic_seed,
    )

    return ProviderChain(
        sources=sources,
        fallback=fallback,
        min_accept_bars=cfg.min_accept_bars,
        logger=log_manager.get_logger("provider-chain"),
    )
