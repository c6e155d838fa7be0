# apps/scanner_worker/sources/yfinance_source.py

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pandas as pd
import polars as pl
import yfinance as yf

from packages.contracts.market import PriceSeries
from packages.contracts.vocabulary.columns import BAR_COLUMNS
from packages.contracts.vocabulary.general import US_VENUES
from packages.quant_lib.date_utils import calendar_days_for_bars, get_current_utc_date
from packages.quant_lib.errors import ProviderTransientFailure
from packages.quant_lib.interfaces import DataSource

# Maps our venue codes to the suffix Yahoo expects (RELIANCE:NSE -> RELIANCE.NS)
VENUE_SUFFIX = {
    "NSE": ".NS",
    "BSE": ".BO",
}


def to_yahoo_symbol(symbol: str, venue: str) -> str:
    venue = venue.upper()
    if venue in US_VENUES:
        return symbol.upper()
    return f"{symbol.upper()}{VENUE_SUFFIX.get(venue, '')}"


class YFinanceSource(DataSource):
    """Primary, low-latency source. Free, no credential, covers NSE/BSE and US venues."""

    name = "yfinance"

    def __init__(
        self,
        logger=None,
        timeout_seconds: float = 15.0,
        target_bars: int = 300,
        max_workers: int = 8,
    ):
        self.logger = logger
        self.timeout_seconds = timeout_seconds
        self.target_bars = target_bars
        # Own pool: a stalled download can only tie up this source's threads
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="yfinance")

    async def fetch(self, symbol: str, venue: str) -> PriceSeries:
        yf_symbol = to_yahoo_symbol(symbol, venue)

        try:
            # yfinance is blocking; keep it off the event loop
            loop = asyncio.get_running_loop()
            pdf = await asyncio.wait_for(
                loop.run_in_executor(self._executor, self._download, yf_symbol),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError:
            raise ProviderTransientFailure(
                self.name, f"{yf_symbol} timed out after {self.timeout_seconds}s"
            )
        except Exception as e:
            raise ProviderTransientFailure(self.name, f"{yf_symbol}: {e}") from e

        if pdf is None or pdf.empty:
            raise ProviderTransientFailure(self.name, f"empty response for {yf_symbol}")

        try:
            df = self._to_frame(pdf)
            return PriceSeries.from_frame(df, symbol, venue)
        except Exception as e:
            raise ProviderTransientFailure(
                self.name, f"could not parse {yf_symbol}: {e}"
            ) from e

    def _download(self, yf_symbol: str) -> pd.DataFrame:
        end = get_current_utc_date() + timedelta(days=1)
        start = end - timedelta(days=calendar_days_for_bars(self.target_bars))

        if self.logger:
            self.logger.debug(f"YFinanceSource: Requesting {yf_symbol} | {start} -> {end}")

        ticker = yf.Ticker(yf_symbol)
        return ticker.history(
            start=start.strftime("%Y-%m-%d"),
            end=end.strftime("%Y-%m-%d"),
            interval="1d",
            auto_adjust=True,
            timeout=self.timeout_seconds,
        )

    async def aclose(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    @staticmethod
    def _to_frame(pdf: pd.DataFrame) -> pl.DataFrame:
        pdf = pdf.reset_index()
        pdf = _clean_columns(pdf)
        pdf = pdf.rename(columns={"date": "time", "datetime": "time"})

        missing = [c for c in BAR_COLUMNS if c not in pdf.columns]
        if missing:
            raise ValueError(f"yfinance frame missing {missing}")

        # Drop the timezone before handing over to polars; we only keep the date.
        times = pd.to_datetime(pdf["time"])
        if times.dt.tz is not None:
            times = times.dt.tz_localize(None)
        pdf["time"] = times
        return pl.from_pandas(pdf[BAR_COLUMNS])


def _clean_columns(df: pd.DataFrame) -> pd.DataFrame:
    """
    Handles yfinance's inconsistent column naming (plain strings or
    ('Close', 'RELIANCE.NS') tuples on MultiIndex frames).
    """
    new_cols = []
    for col in df.columns:
        if isinstance(col, tuple):
            # Take the first element if it's descriptive (e.g., 'Close')
            name = col[0] if col[0] else col[1]
            new_cols.append(str(name).lower().strip())
        else:
            new_cols.append(str(col).lower().strip())

    df.columns = new_cols
    return df
