# packages/quant_lib/indicators.py
"""
Pure indicator math over in-memory sequences.

Every function returns None when there is not enough data instead of raising,
so callers can treat "insufficient history" as an ordinary outcome.

Note on EMA: the average is seeded with the FIRST value of the input and then
smoothed across the entire sequence, not just a trailing window. This differs
from a textbook windowed EMA (which seeds with an SMA of the first `period`
values) and it shifts every EMA-based trend filter. It is kept on purpose so
that scans are comparable with the historical results.
"""

from typing import Optional, Sequence

from packages.contracts.market import PriceBar


def sma(values: Sequence[float], period: int) -> Optional[float]:
    """Arithmetic mean of the last `period` values."""
    if period <= 0 or len(values) < period:
        return None
    window = values[-period:]
    return sum(window) / period


def ema_step(previous: float, value: float, period: int) -> float:
    """One smoothing step with k = 2 / (period + 1)."""
    k = 2 / (period + 1)
    return value * k + previous * (1 - k)


def ema(values: Sequence[float], period: int) -> Optional[float]:
    """Full-history EMA seeded with values[0]."""
    if period <= 0 or len(values) < period:
        return None

    result = values[0]
    for value in values[1:]:
        result = ema_step(result, value, period)
    return result


def true_ranges(bars: Sequence[PriceBar]) -> list[float]:
    """True range for every bar after the first (it needs a previous close)."""
    ranges = []
    for previous, current in zip(bars, bars[1:]):
        ranges.append(
            max(
                current.high - current.low,
                abs(current.high - previous.close),
                abs(current.low - previous.close),
            )
        )
    return ranges


def atr(bars: Sequence[PriceBar], period: int) -> Optional[float]:
    """Average of the last `period` true ranges. Needs period + 1 bars."""
    if period <= 0 or len(bars) < period + 1:
        return None
    return sma(true_ranges(bars), period)


class IndicatorSet:
    """
    Lazily computed indicators for one PriceSeries.

    Values are memoised per (kind, period) for the lifetime of the object only;
    nothing here is persisted, and recomputing from the same series always
    yields the same numbers.
    """

    def __init__(self, series):
        self.series = series
        self._cache: dict[tuple[str, int], Optional[float]] = {}

    def _memo(self, key: tuple[str, int], compute) -> Optional[float]:
        if key not in self._cache:
            self._cache[key] = compute()
        return self._cache[key]

    def sma(self, period: int) -> Optional[float]:
        return self._memo(("sma", period), lambda: sma(self.series.closes, period))

    def ema(self, period: int) -> Optional[float]:
        return self._memo(("ema", period), lambda: ema(self.series.closes, period))

    def atr(self, period: int) -> Optional[float]:
        return self._memo(("atr", period), lambda: atr(self.series.bars, period))

    def volume_sma(self, period: int) -> Optional[float]:
        return self._memo(
            ("volume_sma", period), lambda: sma(self.series.volumes, period)
        )
