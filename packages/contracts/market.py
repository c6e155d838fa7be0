# packages/contracts/market.py

import datetime as dt
from functools import cached_property
from typing import List, Tuple

import polars as pl
from pydantic import BaseModel, ConfigDict, Field, model_validator

from .vocabulary.columns import BAR_COLUMNS, MarketCol


class PriceBar(BaseModel):
    """One trading day for one symbol. Immutable."""

    model_config = ConfigDict(frozen=True)

    date: dt.date
    open: float
    high: float
    low: float
    close: float
    volume: int = Field(ge=0)

    @model_validator(mode="after")
    def _check_ohlc(self):
        body_high = max(self.open, self.close)
        body_low = min(self.open, self.close)
        if not (self.high >= body_high >= body_low >= self.low >= 0):
            raise ValueError(
                f"Invalid OHLC on {self.date}: "
                f"o={self.open} h={self.high} l={self.low} c={self.close}"
            )
        return self


class PriceSeries(BaseModel):
    """
    Daily bars for one (symbol, venue), strictly increasing by date.
    Gaps (weekends, holidays) are expected.
    """

    model_config = ConfigDict(frozen=True)

    symbol: str
    venue: str
    bars: Tuple[PriceBar, ...]

    @model_validator(mode="after")
    def _check_order(self):
        for previous, current in zip(self.bars, self.bars[1:]):
            if current.date <= previous.date:
                raise ValueError(
                    f"{self.symbol}: bars not strictly increasing "
                    f"({previous.date} -> {current.date})"
                )
        return self

    def __len__(self) -> int:
        return len(self.bars)

    @property
    def latest(self) -> PriceBar:
        return self.bars[-1]

    @cached_property
    def closes(self) -> List[float]:
        return [b.close for b in self.bars]

    @cached_property
    def highs(self) -> List[float]:
        return [b.high for b in self.bars]

    @cached_property
    def lows(self) -> List[float]:
        return [b.low for b in self.bars]

    @cached_property
    def volumes(self) -> List[float]:
        return [float(b.volume) for b in self.bars]

    def to_frame(self) -> pl.DataFrame:
        return pl.DataFrame(
            {
                MarketCol.TIME.value: [b.date for b in self.bars],
                MarketCol.OPEN.value: [b.open for b in self.bars],
                MarketCol.HIGH.value: [b.high for b in self.bars],
                MarketCol.LOW.value: [b.low for b in self.bars],
                MarketCol.CLOSE.value: [b.close for b in self.bars],
                MarketCol.VOLUME.value: [b.volume for b in self.bars],
            }
        )

    @classmethod
    def from_frame(cls, df: pl.DataFrame, symbol: str, venue: str) -> "PriceSeries":
        """
        Builds a series from a provider frame with the standard MarketCol columns.

        Providers disagree on rounding of adjusted prices, so the frame is
        normalized before validation: rows with missing prices are dropped,
        duplicate dates keep the last row, and high/low are widened to
        contain the open/close body.
        """
        missing = [c for c in BAR_COLUMNS if c not in df.columns]
        if missing:
            raise ValueError(f"{symbol}: frame is missing columns {missing}")

        time_col = pl.col(MarketCol.TIME.value)
        time_dtype = df.schema[MarketCol.TIME.value]
        if time_dtype == pl.Utf8:
            time_expr = time_col.str.slice(0, 10).str.to_date("%Y-%m-%d")
        elif time_dtype == pl.Date:
            time_expr = time_col
        else:
            time_expr = time_col.dt.date()

        o, h, l, c = (pl.col(x) for x in ("open", "high", "low", "close"))

        clean = (
            df.lazy()
            .select(BAR_COLUMNS)
            .with_columns(
                [
                    time_expr.alias("time"),
                    o.cast(pl.Float64),
                    h.cast(pl.Float64),
                    l.cast(pl.Float64),
                    c.cast(pl.Float64),
                    pl.col("volume").fill_null(0).cast(pl.Float64),
                ]
            )
            .drop_nulls(subset=["time", "open", "high", "low", "close"])
            .filter(c > 0)
            .unique(subset=["time"], keep="last")
            .sort("time")
            .with_columns(
                [
                    pl.max_horizontal(h, o, c).alias("high"),
                    pl.min_horizontal(l, o, c).clip(lower_bound=0.0).alias("low"),
                    pl.col("volume").clip(lower_bound=0.0).round(0).cast(pl.Int64),
                ]
            )
            .collect()
        )

        bars = tuple(
            PriceBar(
                date=row["time"],
                open=row["open"],
                high=row["high"],
                low=row["low"],
                close=row["close"],
                volume=row["volume"],
            )
            for row in clean.iter_rows(named=True)
        )
        return cls(symbol=symbol, venue=venue, bars=bars)
