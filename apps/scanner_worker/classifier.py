# apps/scanner_worker/classifier.py
"""
Volatility Contraction Pattern classifier.

Twelve filters run in a fixed order and the first failure stops evaluation.
Each filter is a pure function of the series (plus the values earlier filters
already computed) and returns a FilterOutcome; ordinary rejection is a return
value, never an exception.

All thresholds below are part of the scan's observable behaviour.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from packages.contracts.market import PriceSeries
from packages.contracts.scan import MatchRecord
from packages.quant_lib.indicators import IndicatorSet, atr, sma

# 1. Price / liquidity
MIN_PRICE = 50.0
MIN_TURNOVER = 5_000_000.0

# 3. 52-week high proximity
LOOKBACK_52W = 252
MAX_DRAWDOWN_PCT = -25.0

# 4. Trend template
TREND_EMAS = (10, 21, 50, 150, 200)
EMA21_TOLERANCE = 0.95

# 5. Volatility contraction
ATR_PERIOD = 14
ATR_CURRENT_WINDOW = 21
ATR_PREVIOUS_WINDOW = 50
ATR_CONTRACTION = 0.8

# 6. Volume dry-up
VOL_AVG10_MAX_RATIO = 1.2
VOL_SPIKE_MAX_RATIO = 2.0

# 7. Consolidation range
CONSOLIDATION_WINDOW = 21
CONSOLIDATION_MIN = 0.05
CONSOLIDATION_MAX = 0.20

# 8. Cup depth
CUP_WINDOW = 200
CUP_DEPTH_MIN = 0.15
CUP_DEPTH_MAX = 0.65

# 9. Stage 2
STAGE2_SMA = 200
STAGE2_PREMIUM = 1.10

# 10. Relative strength
RS_LOOKBACK = 200
RS_MIN_RETURN = 0.20

# 11. Breakout (informational)
BREAKOUT_VOLUME_RATIO = 1.5
BREAKOUT_WINDOW = 21

# Shortest history every filter window can be evaluated on
MIN_HISTORY_FLOOR = BREAKOUT_WINDOW + 1

# 12. Quality gate
TIGHTNESS_WINDOW = 5
TIGHTNESS_MAX_RATIO = 1.15
VOL_20_50_MAX_RATIO = 1.5


@dataclass
class FilterContext:
    """Inputs for one classification plus the values computed so far."""

    series: PriceSeries
    indicators: IndicatorSet
    values: Dict[str, Any] = field(default_factory=dict)

    @property
    def close(self) -> float:
        return self.series.latest.close

    @property
    def volume(self) -> float:
        return float(self.series.latest.volume)


@dataclass(frozen=True)
class FilterOutcome:
    passed: bool
    values: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class VCPFilter:
    name: str
    check: Callable[[FilterContext], FilterOutcome]


@dataclass
class ClassificationTrace:
    """What happened during one classification (for debug logs and tests)."""

    symbol: str
    venue: str
    evaluated: List[str] = field(default_factory=list)
    rejected_at: Optional[str] = None
    values: Dict[str, Any] = field(default_factory=dict)
    match: Optional[MatchRecord] = None
    insufficient_history: bool = False


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


def min_price(ctx: FilterContext) -> FilterOutcome:
    return FilterOutcome(ctx.close >= MIN_PRICE, {"close": ctx.close})


def min_turnover(ctx: FilterContext) -> FilterOutcome:
    turnover = ctx.close * ctx.volume
    return FilterOutcome(turnover >= MIN_TURNOVER, {"turnover": turnover})


def near_52w_high(ctx: FilterContext) -> FilterOutcome:
    high52 = max(ctx.series.closes[-LOOKBACK_52W:])
    pct = (ctx.close - high52) / high52 * 100
    return FilterOutcome(
        not pct < MAX_DRAWDOWN_PCT,
        {"high52": high52, "percent_from_52w_high": pct},
    )


def trend_structure(ctx: FilterContext) -> FilterOutcome:
    emas = {p: ctx.indicators.ema(p) for p in TREND_EMAS}
    values = {f"ema_{p}": v for p, v in emas.items()}

    if any(v is None for v in emas.values()):
        return FilterOutcome(False, values)

    ordered = all(
        emas[fast] > emas[slow] for fast, slow in zip(TREND_EMAS, TREND_EMAS[1:])
    )
    above_ema21 = ctx.close >= emas[21] * EMA21_TOLERANCE
    return FilterOutcome(ordered and above_ema21, values)


def volatility_contraction(ctx: FilterContext) -> FilterOutcome:
    bars = ctx.series.bars
    current_atr = atr(bars[-ATR_CURRENT_WINDOW:], ATR_PERIOD)
    previous_atr = atr(bars[-ATR_PREVIOUS_WINDOW:-ATR_CURRENT_WINDOW], ATR_PERIOD)
    values = {"atr_14": current_atr, "previous_atr_14": previous_atr}

    if current_atr is None or previous_atr is None:
        return FilterOutcome(False, values)
    return FilterOutcome(current_atr < previous_atr * ATR_CONTRACTION, values)


def volume_contraction(ctx: FilterContext) -> FilterOutcome:
    avg10 = ctx.indicators.volume_sma(10)
    avg20 = ctx.indicators.volume_sma(20)
    values = {"volume_avg_10": avg10, "volume_avg_20": avg20}

    if avg10 is None or avg20 is None:
        return FilterOutcome(False, values)

    passed = avg10 <= avg20 * VOL_AVG10_MAX_RATIO and ctx.volume <= avg20 * VOL_SPIKE_MAX_RATIO
    return FilterOutcome(passed, values)


def consolidation_range(ctx: FilterContext) -> FilterOutcome:
    window_high = max(ctx.series.highs[-CONSOLIDATION_WINDOW:])
    window_low = min(ctx.series.lows[-CONSOLIDATION_WINDOW:])
    ratio = (window_high - window_low) / ctx.close
    return FilterOutcome(
        CONSOLIDATION_MIN <= ratio <= CONSOLIDATION_MAX,
        {"volatility_contraction": ratio},
    )


def cup_depth(ctx: FilterContext) -> FilterOutcome:
    high52 = ctx.values["high52"]
    depth = (high52 - min(ctx.series.closes[-CUP_WINDOW:])) / high52
    return FilterOutcome(CUP_DEPTH_MIN <= depth <= CUP_DEPTH_MAX, {"cup_depth": depth})


def stage2(ctx: FilterContext) -> FilterOutcome:
    sma200 = ctx.indicators.sma(STAGE2_SMA)
    if sma200 is None:
        return FilterOutcome(False, {"sma_200": None})
    return FilterOutcome(ctx.close >= sma200 * STAGE2_PREMIUM, {"sma_200": sma200})


def relative_strength(ctx: FilterContext) -> FilterOutcome:
    closes = ctx.series.closes
    if len(closes) < RS_LOOKBACK:
        return FilterOutcome(False, {"return_200": None})

    base = closes[-RS_LOOKBACK]
    ret = (ctx.close - base) / base
    return FilterOutcome(ret >= RS_MIN_RETURN, {"return_200": ret})


def breakout(ctx: FilterContext) -> FilterOutcome:
    # Highs of the 21 sessions before today
    prior_high = max(ctx.series.highs[-(BREAKOUT_WINDOW + 1) : -1])
    avg20 = ctx.values["volume_avg_20"]
    signal = ctx.close > prior_high and ctx.volume > BREAKOUT_VOLUME_RATIO * avg20
    return FilterOutcome(True, {"breakout_signal": signal, "prior_high_21": prior_high})


def quality_gate(ctx: FilterContext) -> FilterOutcome:
    recent = ctx.series.closes[-TIGHTNESS_WINDOW:]
    tightness = max(recent) / min(recent)

    avg20 = ctx.values["volume_avg_20"]
    avg50 = ctx.indicators.volume_sma(50)
    values = {"tightness_5": tightness, "volume_avg_50": avg50}

    if not avg50:
        return FilterOutcome(False, values)

    passed = tightness <= TIGHTNESS_MAX_RATIO and avg20 / avg50 <= VOL_20_50_MAX_RATIO
    return FilterOutcome(passed, values)


DEFAULT_FILTERS: List[VCPFilter] = [
    VCPFilter("min_price", min_price),
    VCPFilter("min_turnover", min_turnover),
    VCPFilter("near_52w_high", near_52w_high),
    VCPFilter("trend_structure", trend_structure),
    VCPFilter("volatility_contraction", volatility_contraction),
    VCPFilter("volume_contraction", volume_contraction),
    VCPFilter("consolidation_range", consolidation_range),
    VCPFilter("cup_depth", cup_depth),
    VCPFilter("stage2", stage2),
    VCPFilter("relative_strength", relative_strength),
    VCPFilter("breakout", breakout),
    VCPFilter("quality_gate", quality_gate),
]


class VCPClassifier:
    def __init__(self, min_history_bars: int = 200, filters: List[VCPFilter] | None = None):
        if min_history_bars < MIN_HISTORY_FLOOR:
            raise ValueError(f"min_history_bars must be at least {MIN_HISTORY_FLOOR}, got {min_history_bars}")
        self.min_history_bars = min_history_bars
        self.filters = list(filters) if filters is not None else list(DEFAULT_FILTERS)

    def classify(self, series: PriceSeries) -> Optional[MatchRecord]:
        """Returns a MatchRecord if every filter passes, else None. Never raises on short input."""
        return self.explain(series).match

    def explain(self, series: PriceSeries) -> ClassificationTrace:
        trace = ClassificationTrace(symbol=series.symbol, venue=series.venue)

        if len(series) < self.min_history_bars:
            trace.insufficient_history = True
            return trace

        ctx = FilterContext(series=series, indicators=IndicatorSet(series))

        for vcp_filter in self.filters:
            trace.evaluated.append(vcp_filter.name)
            outcome = vcp_filter.check(ctx)
            ctx.values.update(outcome.values)

            if not outcome.passed:
                trace.rejected_at = vcp_filter.name
                trace.values = dict(ctx.values)
                return trace

        trace.values = dict(ctx.values)
        trace.match = self._build_match(ctx)
        return trace

    @staticmethod
    def _build_match(ctx: FilterContext) -> MatchRecord:
        v = ctx.values
        latest = ctx.series.latest
        return MatchRecord(
            symbol=ctx.series.symbol,
            venue=ctx.series.venue,
            close_price=latest.close,
            volume=latest.volume,
            percent_from_52w_high=v["percent_from_52w_high"],
            atr_14=v["atr_14"],
            ema_50=v["ema_50"],
            ema_150=v["ema_150"],
            ema_200=v["ema_200"],
            volume_avg_20=v["volume_avg_20"],
            breakout_signal=v["breakout_signal"],
            volatility_contraction=v["volatility_contraction"],
            scan_date=latest.date,
        )
