"""Deterministic series and fake sources shared by the tests."""

from datetime import date
from typing import Dict, Optional

from packages.contracts.market import PriceBar, PriceSeries
from packages.quant_lib.date_utils import weekdays_ending
from packages.quant_lib.errors import ProviderTransientFailure
from packages.quant_lib.interfaces import DataSource

SERIES_END = date(2024, 6, 28)


def series_from_closes(closes, symbol="TEST", venue="NSE", spread=0.0, volume=100_000, end=SERIES_END):
    days = weekdays_ending(end, len(closes))
    bars = [
        PriceBar(date=d, open=c, high=c + spread, low=max(c - spread, 0.0), close=c, volume=volume)
        for d, c in zip(days, closes)
    ]
    return PriceSeries(symbol=symbol, venue=venue, bars=tuple(bars))


def vcp_series(
    symbol: str = "VCPX",
    venue: str = "NSE",
    bars: int = 300,
    scale: float = 1.0,
    volume: int = 100_000,
    last_volume: Optional[int] = 180_000,
    recent_volume: Optional[int] = None,
    base_spread: float = 2.0,
    recent_spread: float = 0.5,
    end: date = SERIES_END,
    start: float = 50.0,
    step: float = 1.0,
    closes: Optional[Dict[int, float]] = None,
) -> PriceSeries:
    """
    A steady uptrend (close = 50 + i, so the last close is 349) whose daily
    range tightens from +/-2 to +/-0.5 over the final 21 sessions, with a
    volume spike on the last bar. With the defaults it passes all twelve VCP
    filters and flags a breakout; each knob breaks exactly one of them.

    `closes` overrides single closes by bar index (negative indices count
    from the end), e.g. {100: 300.0} lifts the bar 200 sessions back.
    """
    overrides = {i % bars: c for i, c in (closes or {}).items()}
    days = weekdays_ending(end, bars)
    out = []
    for i, day in enumerate(days):
        close = overrides.get(i, (start + step * i) * scale)
        spread = (recent_spread if i >= bars - 21 else base_spread) * scale

        vol = volume
        if recent_volume is not None and i >= bars - 20:
            vol = recent_volume
        if last_volume is not None and i == bars - 1:
            vol = last_volume

        out.append(
            PriceBar(date=day, open=close, high=close + spread, low=close - spread, close=close, volume=vol)
        )
    return PriceSeries(symbol=symbol, venue=venue, bars=tuple(out))


class FakeSource(DataSource):
    """Serves canned series per symbol; raises for anything it doesn't know."""

    def __init__(self, name="fake", series: Dict[str, PriceSeries] | None = None, errors=None, is_real=True):
        self.name = name
        self.is_real = is_real
        self.series = series or {}
        self.errors = errors or {}
        self.calls = []
        self.closed = False

    async def fetch(self, symbol, venue):
        self.calls.append((symbol, venue))
        if symbol in self.errors:
            raise self.errors[symbol]
        if symbol not in self.series:
            raise ProviderTransientFailure(self.name, f"no data for {symbol}")
        return self.series[symbol]

    async def aclose(self):
        self.closed = True
