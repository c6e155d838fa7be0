# packages/database/models.py

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import declarative_base

from packages.contracts.scan import MatchRecord, ScanRun


# This is the base class which our model classes will inherit.
Base = declarative_base()


class VCPScanResult(Base):
    """
    One VCP match. Replaced wholesale per scan date (delete >= date, then insert),
    so (symbol, exchange, scan_date) is unique.
    """

    __tablename__ = "vcp_scan_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    symbol = Column(String, nullable=False)
    exchange = Column(String, nullable=False)
    close_price = Column(Float, nullable=False)
    volume = Column(BigInteger, nullable=False)
    percent_from_52w_high = Column(Float)
    atr_14 = Column(Float)
    ema_50 = Column(Float)
    ema_150 = Column(Float)
    ema_200 = Column(Float)
    volume_avg_20 = Column(BigInteger)
    breakout_signal = Column(Boolean, default=False)
    volatility_contraction = Column(Float)
    scan_date = Column(Date, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "symbol", "exchange", "scan_date", name="uq_vcp_scan_results_key"
        ),
        # Optimizes: "Latest matches" for the UI
        Index("idx_vcp_scan_results_scan_date", "scan_date"),
    )

    @classmethod
    def from_record(cls, record: MatchRecord) -> "VCPScanResult":
        return cls(
            symbol=record.symbol,
            exchange=record.venue,
            close_price=record.close_price,
            volume=record.volume,
            percent_from_52w_high=record.percent_from_52w_high,
            atr_14=record.atr_14,
            ema_50=record.ema_50,
            ema_150=record.ema_150,
            ema_200=record.ema_200,
            volume_avg_20=round(record.volume_avg_20),
            breakout_signal=record.breakout_signal,
            volatility_contraction=record.volatility_contraction,
            scan_date=record.scan_date,
        )

    def to_record(self) -> MatchRecord:
        return MatchRecord(
            symbol=self.symbol,
            venue=self.exchange,
            close_price=self.close_price,
            volume=self.volume,
            percent_from_52w_high=self.percent_from_52w_high,
            atr_14=self.atr_14,
            ema_50=self.ema_50,
            ema_150=self.ema_150,
            ema_200=self.ema_200,
            volume_avg_20=float(self.volume_avg_20 or 0),
            breakout_signal=bool(self.breakout_signal),
            volatility_contraction=self.volatility_contraction,
            scan_date=self.scan_date,
        )


class ScanMetadata(Base):
    """Append-only ledger: one row per scan run."""

    __tablename__ = "scan_metadata"

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(String, unique=True, nullable=False)
    scan_date = Column(Date, nullable=False)
    scan_type = Column(String, nullable=False, default="VCP")
    mode = Column(String, nullable=False)
    status = Column(String, nullable=False)

    total_stocks_scanned = Column(Integer)  # universe size
    processed_count = Column(Integer)
    succeeded_count = Column(Integer)
    real_data_count = Column(Integer)
    insufficient_history_count = Column(Integer)
    error_count = Column(Integer)
    filtered_results_count = Column(Integer)  # matches
    scan_duration_seconds = Column(Float)
    error_message = Column(String, nullable=True)

    started_at = Column(DateTime(timezone=True))
    finished_at = Column(DateTime(timezone=True))
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_scan_metadata_scan_date", "scan_date"),)

    @classmethod
    def from_run(cls, run: ScanRun) -> "ScanMetadata":
        return cls(
            run_id=run.run_id,
            scan_date=run.scan_date,
            scan_type=run.scan_type,
            mode=run.mode.value,
            status=run.status.value,
            total_stocks_scanned=run.universe_size,
            processed_count=run.processed,
            succeeded_count=run.succeeded,
            real_data_count=run.real_data,
            insufficient_history_count=run.insufficient_history,
            error_count=run.errors,
            filtered_results_count=run.matches,
            scan_duration_seconds=run.duration_seconds,
            error_message=run.error_message,
            started_at=run.started_at,
            finished_at=run.finished_at,
        )
