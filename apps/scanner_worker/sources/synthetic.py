# apps/scanner_worker/sources/synthetic.py

import numpy as np

from packages.contracts.market import PriceBar, PriceSeries
from packages.quant_lib.date_utils import get_current_utc_date, weekdays_ending
from packages.quant_lib.interfaces import DataSource

# Rough trading ranges for well known large caps; anything else gets GENERIC_RANGE.
BASE_PRICE_RANGES = {
    "RELIANCE": (2400.0, 2600.0),
    "TCS": (3500.0, 3700.0),
    "HDFCBANK": (1500.0, 1700.0),
    "INFY": (1400.0, 1600.0),
    "HINDUNILVR": (2300.0, 2500.0),
    "ICICIBANK": (900.0, 1100.0),
    "KOTAKBANK": (1700.0, 1900.0),
    "BHARTIARTL": (800.0, 1000.0),
    "LT": (3000.0, 3300.0),
    "ASIANPAINT": (2800.0, 3200.0),
    "MARUTI": (10000.0, 11000.0),
    "NESTLEIND": (22000.0, 24000.0),
    "AXISBANK": (950.0, 1100.0),
    "TITAN": (3000.0, 3400.0),
    "WIPRO": (400.0, 500.0),
    "SBIN": (550.0, 650.0),
    "BAJFINANCE": (6500.0, 7500.0),
}
GENERIC_RANGE = (100.0, 1000.0)

DAILY_VOLATILITY = (0.015, 0.04)

# volume ~= TURNOVER_SCALE / price, so expensive stocks trade fewer shares
TURNOVER_SCALE = 5e8
MIN_VOLUME = 1_000


class SyntheticSource(DataSource):
    """
    Terminal fallback. Generates a plausible random walk so the pipeline keeps
    running when every real provider fails. Same statistical envelope on every
    call; exact values are not reproducible unless a seed is given. Never fails.
    """

    name = "synthetic"
    is_real = False

    def __init__(self, target_bars: int = 300, drift: float = 0.0005, seed: int | None = None):
        self.target_bars = target_bars
        self.drift = drift
        self.rng = np.random.default_rng(seed)

    def base_price(self, symbol: str) -> float:
        low, high = BASE_PRICE_RANGES.get(symbol.upper(), GENERIC_RANGE)
        return float(self.rng.uniform(low, high))

    async def fetch(self, symbol: str, venue: str) -> PriceSeries:
        return self.generate(symbol, venue)

    def generate(self, symbol: str, venue: str) -> PriceSeries:
        days = weekdays_ending(get_current_utc_date(), self.target_bars)
        price = self.base_price(symbol)

        bars = []
        for day in days:
            volatility = self.rng.uniform(*DAILY_VOLATILITY)
            # Bounded move in [-vol, +vol] plus a slight upward drift
            change = self.rng.uniform(-volatility, volatility) + self.drift
            price = max(price * (1 + change), 0.01)

            close = price
            open_ = close * (1 + self.rng.uniform(-0.5, 0.5) * volatility)
            high = max(open_, close) * (1 + self.rng.uniform(0, 0.5) * volatility)
            low = min(open_, close) * (1 - self.rng.uniform(0, 0.5) * volatility)

            multiplier = self.rng.uniform(0.5, 1.5)
            volume = max(int(TURNOVER_SCALE / close * multiplier), MIN_VOLUME)

            bars.append(
                PriceBar(
                    date=day,
                    open=round(open_, 2),
                    high=round(high, 2),
                    low=round(low, 2),
                    close=round(close, 2),
                    volume=volume,
                )
            )

        return PriceSeries(symbol=symbol, venue=venue, bars=tuple(bars))
