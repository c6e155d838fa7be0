# apps/scanner_worker/sources/alpaca.py

import asyncio
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import polars as pl
from aiolimiter import AsyncLimiter
from alpaca.data.enums import DataFeed
from alpaca.data.historical import StockHistoricalDataClient
from alpaca.data.requests import StockBarsRequest
from alpaca.data.timeframe import TimeFrame

from packages.contracts.market import PriceSeries
from packages.contracts.vocabulary.general import US_VENUES
from packages.quant_lib.date_utils import calendar_days_for_bars
from packages.quant_lib.errors import ProviderTransientFailure, ProviderUnavailable
from packages.quant_lib.interfaces import DataSource

# A mapping to rename Alpaca's columns to ours
ALPACA_COLUMN_MAP = {
    "timestamp": "time",
    "open": "open",
    "high": "high",
    "low": "low",
    "close": "close",
    "volume": "volume",
}


class AlpacaSource(DataSource):
    """
    Credentialed source for US venues only. Without keys every request is
    ProviderUnavailable, which the chain skips without counting an error.
    """

    name = "alpaca"

    def __init__(
        self,
        api_key: str | None,
        secret_key: str | None,
        logger=None,
        timeout_seconds: float = 15.0,
        target_bars: int = 300,
        requests_per_minute: int = 200,
        max_workers: int = 8,
    ):
        self.api_key = api_key
        self.secret_key = secret_key
        self.logger = logger
        self.timeout_seconds = timeout_seconds
        self.target_bars = target_bars
        self.limiter = AsyncLimiter(requests_per_minute, 60)
        self._client: StockHistoricalDataClient | None = None
        # alpaca-py has no request timeout; a bounded pool caps what stalled calls can hold
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="alpaca")

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key and self.secret_key)

    def _get_client(self) -> StockHistoricalDataClient:
        if self._client is None:
            self._client = StockHistoricalDataClient(self.api_key, self.secret_key)
        return self._client

    async def fetch(self, symbol: str, venue: str) -> PriceSeries:
        if not self.has_credentials:
            raise ProviderUnavailable(self.name, "API key / secret not configured")
        if venue.upper() not in US_VENUES:
            raise ProviderUnavailable(self.name, f"venue {venue} not served")

        end_dt = datetime.now(timezone.utc)
        start_dt = end_dt - timedelta(days=calendar_days_for_bars(self.target_bars))

        request_params = StockBarsRequest(
            symbol_or_symbols=[symbol.upper()],
            timeframe=TimeFrame.Day,
            start=start_dt,
            end=end_dt,
            adjustment="all",
            feed=DataFeed.IEX,
        )

        try:
            loop = asyncio.get_running_loop()
            async with self.limiter:
                barset = await asyncio.wait_for(
                    loop.run_in_executor(
                        self._executor, self._get_client().get_stock_bars, request_params
                    ),
                    timeout=self.timeout_seconds,
                )
        except asyncio.TimeoutError:
            raise ProviderTransientFailure(
                self.name, f"{symbol} timed out after {self.timeout_seconds}s"
            )
        except Exception as e:
            raise ProviderTransientFailure(self.name, f"{symbol}: {e}") from e

        data = []
        for bar in barset.data.get(symbol.upper(), []):
            data.append(bar.model_dump())

        if not data:
            raise ProviderTransientFailure(self.name, f"no bars returned for {symbol}")

        try:
            df = pl.from_dicts(data).rename(ALPACA_COLUMN_MAP)
            return PriceSeries.from_frame(df, symbol, venue)
        except Exception as e:
            raise ProviderTransientFailure(self.name, f"could not parse {symbol}: {e}") from e

    async def aclose(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)
