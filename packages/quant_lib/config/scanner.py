# packages/quant_lib/config/scanner.py

from typing import Optional
from pydantic import Field
from pydantic_settings import SettingsConfigDict
from .base import EnvConfig

# Major NSE / BSE large caps. Used when no universe file is configured.
DEFAULT_UNIVERSE = (
    "RELIANCE:NSE,TCS:NSE,HDFCBANK:NSE,INFY:NSE,HINDUNILVR:NSE,ICICIBANK:NSE,"
    "KOTAKBANK:NSE,BHARTIARTL:NSE,LT:NSE,ASIANPAINT:NSE,MARUTI:NSE,NESTLEIND:NSE,"
    "AXISBANK:NSE,ULTRACEMCO:NSE,TITAN:NSE,WIPRO:NSE,TECHM:NSE,HCLTECH:NSE,"
    "POWERGRID:NSE,SUNPHARMA:NSE,BAJFINANCE:NSE,SBIN:NSE,HDFCLIFE:NSE,ADANIPORTS:NSE,"
    "RELIANCE:BSE,TCS:BSE,HDFCBANK:BSE,INFY:BSE,HINDUNILVR:BSE,ICICIBANK:BSE,"
    "BHARTIARTL:BSE,LT:BSE,ASIANPAINT:BSE,MARUTI:BSE,NESTLEIND:BSE,AXISBANK:BSE,"
    "TITAN:BSE,WIPRO:BSE,TECHM:BSE,HCLTECH:BSE"
)


class ScannerConfig(EnvConfig):
    # Batch size doubles as the concurrency ceiling.
    batch_size: int = Field(default=20, ge=1)
    # Breakout reads the 21 sessions before the latest bar, so 22 is the floor.
    min_history_bars: int = Field(default=200, ge=22)

    # Inter-batch pacing. Backoff kicks in once the run error rate crosses the threshold.
    batch_delay_seconds: float = 1.0
    backoff_delay_seconds: float = 5.0
    error_rate_threshold: float = 0.10

    # Universe: "SYMBOL:VENUE" pairs, or a CSV/text file of symbols.
    universe: str = DEFAULT_UNIVERSE
    universe_file: Optional[str] = None
    default_venue: str = "NSE"
    max_custom_symbols: int = 200

    scan_type: str = "VCP"

    model_config = SettingsConfigDict(
        env_prefix="SCANNER_",  # Looks for SCANNER_BATCH_SIZE, SCANNER_UNIVERSE_FILE
        case_sensitive=False,
        extra="ignore",
    )
