# packages/contracts/scan.py

import datetime as dt
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .market import PriceSeries
from .vocabulary.general import FailureKind, ScanMode, ScanStatus, SymbolStatus


class FetchFailure(BaseModel):
    """One provider's typed failure inside a chain attempt."""

    model_config = ConfigDict(frozen=True)

    provider: str
    kind: FailureKind
    reason: str


class FetchResult(BaseModel):
    """What the provider chain hands back. The chain itself never fails."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    venue: str
    series: PriceSeries
    source: str
    is_real: bool
    failures: Tuple[FetchFailure, ...] = ()


class MatchRecord(BaseModel):
    """A symbol that passed all twelve VCP filters. Keyed by (symbol, venue, scan_date)."""

    model_config = ConfigDict(frozen=True)

    symbol: str
    venue: str
    close_price: float
    volume: int
    percent_from_52w_high: float
    atr_14: float
    ema_50: float
    ema_150: float
    ema_200: float
    volume_avg_20: float
    breakout_signal: bool
    volatility_contraction: float
    scan_date: dt.date

    @property
    def key(self) -> Tuple[str, str, dt.date]:
        return (self.symbol, self.venue, self.scan_date)


class SymbolOutcome(BaseModel):
    """
    Result of one per-symbol task. Tasks return these instead of touching
    shared counters; the orchestrator folds them together.
    """

    model_config = ConfigDict(frozen=True)

    symbol: str
    venue: str
    status: SymbolStatus
    source: Optional[str] = None
    is_real: bool = False
    bars: int = 0
    as_of: Optional[dt.date] = None  # date of the latest bar fetched
    match: Optional[MatchRecord] = None
    rejected_at: Optional[str] = None
    error: Optional[str] = None


class ScanRun(BaseModel):
    """Metadata for one orchestration pass. Written once, in a terminal state."""

    run_id: str
    scan_type: str = "VCP"
    mode: ScanMode
    scan_date: dt.date
    started_at: dt.datetime
    finished_at: Optional[dt.datetime] = None
    status: ScanStatus = ScanStatus.IDLE

    universe_size: int = 0
    batches: int = 0
    processed: int = 0
    succeeded: int = 0
    real_data: int = 0
    synthetic_data: int = 0
    insufficient_history: int = 0
    errors: int = 0
    matches: int = 0
    persist_errors: int = 0

    error_message: Optional[str] = None

    @computed_field
    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return round((self.finished_at - self.started_at).total_seconds(), 3)

    @property
    def error_rate(self) -> float:
        return self.errors / self.processed if self.processed else 0.0


class ScanSummary(BaseModel):
    """Structured response of the scan trigger."""

    run_id: str
    status: ScanStatus
    mode: ScanMode
    scan_date: dt.date
    universe_size: int
    processed: int
    succeeded: int
    real_data: int
    synthetic_data: int
    insufficient_history: int
    errors: int
    matches: int
    batches: int
    persist_errors: int = 0
    duration_seconds: float
    success_rate: float = Field(description="succeeded / processed")
    real_data_rate: float = Field(description="real-data fetches / succeeded fetches")
    error_rate: float
    hit_rate: float = Field(description="matches / succeeded")
    message: str
    results: List[MatchRecord] = []

    @classmethod
    def from_run(cls, run: ScanRun, results: List[MatchRecord], message: str):
        def ratio(num: int, den: int) -> float:
            return round(num / den, 4) if den else 0.0

        return cls(
            run_id=run.run_id,
            status=run.status,
            mode=run.mode,
            scan_date=run.scan_date,
            universe_size=run.universe_size,
            processed=run.processed,
            succeeded=run.succeeded,
            real_data=run.real_data,
            synthetic_data=run.synthetic_data,
            insufficient_history=run.insufficient_history,
            errors=run.errors,
            matches=run.matches,
            batches=run.batches,
            persist_errors=run.persist_errors,
            duration_seconds=run.duration_seconds,
            success_rate=ratio(run.succeeded, run.processed),
            real_data_rate=ratio(run.real_data, run.real_data + run.synthetic_data),
            error_rate=ratio(run.errors, run.processed),
            hit_rate=ratio(run.matches, run.succeeded),
            message=message,
            results=results,
        )
