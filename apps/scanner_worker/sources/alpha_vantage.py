# apps/scanner_worker/sources/alpha_vantage.py

import httpx
import polars as pl
from aiolimiter import AsyncLimiter

from packages.contracts.market import PriceSeries
from packages.contracts.vocabulary.general import US_VENUES
from packages.quant_lib.errors import ProviderTransientFailure, ProviderUnavailable
from packages.quant_lib.interfaces import DataSource

BASE_URL = "https://www.alphavantage.co/query"

VENUE_SUFFIX = {
    "NSE": ".NSE",
    "BSE": ".BSE",
}

# Alpha Vantage field names inside "Time Series (Daily)"
FIELD_MAP = {
    "1. open": "open",
    "2. high": "high",
    "3. low": "low",
    "4. close": "close",
    "5. volume": "volume",
}


def to_alpha_vantage_symbol(symbol: str, venue: str) -> str:
    venue = venue.upper()
    if venue in US_VENUES:
        return symbol.upper()
    return f"{symbol.upper()}{VENUE_SUFFIX.get(venue, '')}"


class AlphaVantageSource(DataSource):
    """
    Metered secondary source. The free tier allows 5 calls a minute, so every
    request waits on a limiter that spaces calls `spacing_seconds` apart.
    """

    name = "alpha_vantage"

    def __init__(
        self,
        api_key: str | None,
        logger=None,
        timeout_seconds: float = 15.0,
        target_bars: int = 300,
        spacing_seconds: float = 12.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.api_key = api_key
        self.logger = logger
        self.timeout_seconds = timeout_seconds
        self.target_bars = target_bars
        self.limiter = AsyncLimiter(1, spacing_seconds)
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def fetch(self, symbol: str, venue: str) -> PriceSeries:
        if not self.api_key:
            raise ProviderUnavailable(self.name, "API key not configured")

        av_symbol = to_alpha_vantage_symbol(symbol, venue)
        params = {
            "function": "TIME_SERIES_DAILY",
            "symbol": av_symbol,
            # "compact" only returns the latest 100 points
            "outputsize": "full" if self.target_bars > 100 else "compact",
            "apikey": self.api_key,
        }

        try:
            async with self.limiter:
                response = await self._get_client().get(
                    BASE_URL, params=params, timeout=self.timeout_seconds
                )
        except httpx.TimeoutException:
            raise ProviderTransientFailure(
                self.name, f"{av_symbol} timed out after {self.timeout_seconds}s"
            )
        except httpx.HTTPError as e:
            raise ProviderTransientFailure(self.name, f"{av_symbol}: {e}") from e

        if response.status_code == 429:
            raise ProviderTransientFailure(self.name, "rate limited (HTTP 429)")
        if response.status_code != 200:
            raise ProviderTransientFailure(
                self.name, f"{av_symbol}: HTTP {response.status_code}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderTransientFailure(self.name, f"{av_symbol}: invalid JSON") from e

        return self._parse(payload, symbol, venue)

    def _parse(self, payload: dict, symbol: str, venue: str) -> PriceSeries:
        # Check for API errors
        if "Error Message" in payload:
            raise ProviderTransientFailure(self.name, payload["Error Message"])

        # Throttling comes back as HTTP 200 with a "Note" or "Information" field
        for key in ("Note", "Information"):
            if key in payload:
                raise ProviderTransientFailure(self.name, f"rate limited: {payload[key]}")

        time_series = payload.get("Time Series (Daily)")
        if not time_series:
            raise ProviderTransientFailure(self.name, f"no daily series for {symbol}")

        try:
            rows = []
            for day, fields in time_series.items():
                row = {"time": day}
                for av_key, col in FIELD_MAP.items():
                    row[col] = float(fields[av_key])
                rows.append(row)

            df = pl.DataFrame(rows)
            series = PriceSeries.from_frame(df, symbol, venue)
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderTransientFailure(
                self.name, f"malformed payload for {symbol}: {e}"
            ) from e

        # "full" returns 20 years; keep the tail we asked for
        if len(series) > self.target_bars:
            series = PriceSeries(
                symbol=series.symbol, venue=series.venue, bars=series.bars[-self.target_bars :]
            )
        return series
