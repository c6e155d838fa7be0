from enum import Enum


class StrEnum(str, Enum):
    def __str__(self):
        return self.value


class MarketCol(StrEnum):
    """Standard columns every data source must normalize its bars to."""

    TIME = "time"
    SYMBOL = "symbol"
    OPEN = "open"
    HIGH = "high"
    LOW = "low"
    CLOSE = "close"
    VOLUME = "volume"


BAR_COLUMNS = [
    MarketCol.TIME.value,
    MarketCol.OPEN.value,
    MarketCol.HIGH.value,
    MarketCol.LOW.value,
    MarketCol.CLOSE.value,
    MarketCol.VOLUME.value,
]


class MatchCol(StrEnum):
    """Column names of a persisted VCP match (vcp_scan_results)."""

    SYMBOL = "symbol"
    EXCHANGE = "exchange"
    CLOSE_PRICE = "close_price"
    VOLUME = "volume"
    PCT_FROM_52W_HIGH = "percent_from_52w_high"
    ATR_14 = "atr_14"
    EMA_50 = "ema_50"
    EMA_150 = "ema_150"
    EMA_200 = "ema_200"
    VOLUME_AVG_20 = "volume_avg_20"
    BREAKOUT_SIGNAL = "breakout_signal"
    VOLATILITY_CONTRACTION = "volatility_contraction"
    SCAN_DATE = "scan_date"
