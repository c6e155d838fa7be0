# apps/scanner_worker/store.py

from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import polars as pl
from sqlalchemy import and_, delete, func, or_, select, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from packages.contracts.scan import MatchRecord, ScanRun
from packages.contracts.vocabulary.columns import MatchCol
from packages.database.models import Base, ScanMetadata, VCPScanResult
from packages.database.session import build_engine, build_session_factory, session_scope
from packages.quant_lib.errors import PersistenceFailure
from packages.quant_lib.logging import get_null_logger

# Keeps the OR-of-keys delete well below SQLite's expression depth limit
DELETE_CHUNK_SIZE = 200


class SqlResultStore:
    """
    Result store on SQLAlchemy async.

    vcp_scan_results is replaced by date (delete >= date, then insert) and
    scan_metadata is append-only. Every SQLAlchemy error and every dropped
    connection (OSError) leaves here as a PersistenceFailure so callers deal
    with one exception type.
    """

    def __init__(
        self,
        url: str | None = None,
        engine: AsyncEngine | None = None,
        logger=None,
    ):
        self._owns_engine = engine is None
        self.engine = engine or build_engine(url)
        self.session_factory = build_session_factory(self.engine)
        self.logger = logger or get_null_logger("store")

    async def open(self) -> None:
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceFailure(f"Database unreachable: {e}") from e
        self.logger.debug("Result store connection verified.")

    async def init_schema(self) -> None:
        """Creates vcp_scan_results and scan_metadata if they don't exist."""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceFailure(f"Schema creation failed: {e}") from e
        self.logger.success("Scanner tables are ready.")

    async def upsert_matches(self, matches: List[MatchRecord]) -> int:
        if not matches:
            return 0

        try:
            async with session_scope(self.session_factory) as session:
                for i in range(0, len(matches), DELETE_CHUNK_SIZE):
                    chunk = matches[i : i + DELETE_CHUNK_SIZE]
                    await session.execute(
                        delete(VCPScanResult).where(
                            or_(
                                *(
                                    and_(
                                        VCPScanResult.symbol == m.symbol,
                                        VCPScanResult.exchange == m.venue,
                                        VCPScanResult.scan_date == m.scan_date,
                                    )
                                    for m in chunk
                                )
                            )
                        )
                    )
                session.add_all([VCPScanResult.from_record(m) for m in matches])
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceFailure(f"Upsert of {len(matches)} matches failed: {e}") from e

        self.logger.debug(f"Upserted {len(matches)} matches.")
        return len(matches)

    async def replace_matches(self, scan_date: date, matches: List[MatchRecord]) -> int:
        try:
            async with session_scope(self.session_factory) as session:
                # 1. Drop everything this run supersedes
                result = await session.execute(
                    delete(VCPScanResult).where(VCPScanResult.scan_date >= scan_date)
                )
                # 2. Insert the run's full match set
                session.add_all([VCPScanResult.from_record(m) for m in matches])
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceFailure(f"Replacing matches from {scan_date} failed: {e}") from e

        self.logger.info(
            f"Replaced matches from {scan_date}: removed {result.rowcount}, wrote {len(matches)}."
        )
        return len(matches)

    async def record_run(self, run: ScanRun) -> None:
        try:
            async with session_scope(self.session_factory) as session:
                session.add(ScanMetadata.from_run(run))
        except (SQLAlchemyError, OSError) as e:
            raise PersistenceFailure(f"Recording run {run.run_id} failed: {e}") from e

    async def latest_matches(self) -> List[MatchRecord]:
        """Matches of the most recent scan date, by symbol."""
        async with session_scope(self.session_factory) as session:
            latest = (await session.execute(select(func.max(VCPScanResult.scan_date)))).scalar()
            if latest is None:
                return []
            rows = await session.execute(
                select(VCPScanResult)
                .where(VCPScanResult.scan_date == latest)
                .order_by(VCPScanResult.symbol, VCPScanResult.exchange)
            )
            return [row.to_record() for row in rows.scalars()]

    async def list_runs(self, limit: int = 20) -> List[ScanMetadata]:
        async with session_scope(self.session_factory) as session:
            rows = await session.execute(
                select(ScanMetadata).order_by(ScanMetadata.id.desc()).limit(limit)
            )
            return list(rows.scalars())

    async def close(self) -> None:
        if self._owns_engine:
            await self.engine.dispose()


class InMemoryResultStore:
    """Same contract as SqlResultStore, kept in dicts. Used for dry runs and tests."""

    def __init__(self, logger=None):
        self.matches: Dict[Tuple[str, str, date], MatchRecord] = {}
        self.runs: List[ScanRun] = []
        self.logger = logger or get_null_logger("store")

    async def open(self) -> None:
        return None

    async def init_schema(self) -> None:
        return None

    async def upsert_matches(self, matches: List[MatchRecord]) -> int:
        for m in matches:
            self.matches[m.key] = m
        return len(matches)

    async def replace_matches(self, scan_date: date, matches: List[MatchRecord]) -> int:
        kept = {k: v for k, v in self.matches.items() if v.scan_date < scan_date}
        self.logger.debug(
            f"Replaced in-memory matches from {scan_date}: removed "
            f"{len(self.matches) - len(kept)}, wrote {len(matches)}."
        )
        self.matches = kept
        return await self.upsert_matches(matches)

    async def record_run(self, run: ScanRun) -> None:
        self.runs.append(run.model_copy())

    async def latest_matches(self) -> List[MatchRecord]:
        if not self.matches:
            return []
        latest = max(m.scan_date for m in self.matches.values())
        return sorted(
            (m for m in self.matches.values() if m.scan_date == latest),
            key=lambda m: (m.symbol, m.venue),
        )

    async def list_runs(self, limit: int = 20) -> List[ScanRun]:
        return list(reversed(self.runs))[:limit]

    async def close(self) -> None:
        return None


def export_matches_csv(matches: List[MatchRecord], path: str | Path) -> Optional[Path]:
    """Writes matches to CSV (one row per match, close-price descending). Returns None if empty."""
    if not matches:
        return None

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    # Same column names as vcp_scan_results
    df = (
        pl.DataFrame([m.model_dump() for m in matches])
        .rename({"venue": MatchCol.EXCHANGE.value})
        .select([col.value for col in MatchCol])
        .sort(MatchCol.CLOSE_PRICE.value, descending=True)
    )
    df.write_csv(path)
    return path
