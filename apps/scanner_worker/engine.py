# apps/scanner_worker/engine.py

import asyncio
import uuid
from datetime import date, datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from packages.contracts.scan import MatchRecord, ScanRun, ScanSummary, SymbolOutcome
from packages.contracts.vocabulary.general import ScanMode, ScanStatus, SymbolStatus
from packages.quant_lib.config.scanner import ScannerConfig
from packages.quant_lib.date_utils import get_current_utc_date
from packages.quant_lib.errors import PersistenceFailure, ScannerError, UniverseError
from packages.quant_lib.interfaces import ResultStore
from packages.quant_lib.config import settings as default_settings
from packages.quant_lib.logging import LogManager, get_null_logger

from .classifier import VCPClassifier
from .events import (
    BackoffApplied,
    BatchCompleted,
    BatchStarted,
    EventBus,
    LoggingEventSink,
    PersistFailed,
    RunFinished,
    RunStarted,
    SymbolProcessed,
)
from .sources.chain import ProviderChain
from .sources.factory import build_provider_chain
from .store import InMemoryResultStore, SqlResultStore
from .universe import Instrument, SymbolSpec, build_universe, chunked


class ScanEngine:
    """
    Drives one scan: universe -> batches -> (fetch + classify) per symbol -> store.

    All tasks of a batch run concurrently, batches run one after another, so
    batch size is the concurrency ceiling. Per-symbol tasks return a
    SymbolOutcome and only this task folds them into counters.
    """

    def __init__(
        self,
        chain: ProviderChain,
        classifier: VCPClassifier,
        store: ResultStore,
        config: ScannerConfig,
        logger=None,
        events: EventBus | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.chain = chain
        self.classifier = classifier
        self.store = store
        self.config = config
        self.logger = logger or get_null_logger("scan-engine")
        self.events = events or EventBus(self.logger)
        self._sleep = sleep

        # Internal state
        self._status = ScanStatus.IDLE
        self._cancel_requested = False

    @property
    def status(self) -> ScanStatus:
        return self._status

    def cancel(self) -> None:
        """Asks a running scan to stop. Takes effect before the next batch starts."""
        if self._status == ScanStatus.RUNNING:
            self._cancel_requested = True

    async def run(
        self,
        mode: ScanMode = ScanMode.FULL,
        symbols: Sequence[SymbolSpec] | None = None,
        scan_date: date | None = None,
    ) -> ScanSummary:
        if self._status == ScanStatus.RUNNING:
            raise ScannerError("A scan is already running on this engine.")

        mode = ScanMode(mode)
        run = ScanRun(
            run_id=uuid.uuid4().hex,
            scan_type=self.config.scan_type,
            mode=mode,
            scan_date=scan_date or get_current_utc_date(),
            started_at=datetime.now(timezone.utc),
            status=ScanStatus.RUNNING,
        )
        self._status = ScanStatus.RUNNING
        self._cancel_requested = False

        try:
            return await self._execute(run, mode, symbols, scan_date)
        except Exception as e:
            self.logger.exception(f"Scan {run.run_id} aborted: {type(e).__name__}: {e}")
            raise
        finally:
            # Whatever escaped, the engine must accept the next run
            if self._status == ScanStatus.RUNNING:
                self._status = ScanStatus.FAILED

    async def _execute(
        self,
        run: ScanRun,
        mode: ScanMode,
        symbols: Sequence[SymbolSpec] | None,
        scan_date: date | None,
    ) -> ScanSummary:
        # 1. Store must be reachable, otherwise nothing we compute can be kept
        try:
            await self.store.open()
        except (PersistenceFailure, OSError) as e:
            return await self._fail(run, f"Result store unavailable: {e}", store_ok=False)

        # 2. Universe
        try:
            universe = build_universe(mode, self.config, symbols, logger=self.logger)
        except UniverseError as e:
            return await self._fail(run, str(e))

        batches = chunked(universe, self.config.batch_size)
        run.universe_size = len(universe)
        run.batches = len(batches)

        self.events.emit(
            RunStarted(
                run_id=run.run_id,
                mode=mode,
                universe_size=run.universe_size,
                batches=run.batches,
                providers=self.chain.names,
            )
        )

        # 3. Batches
        matches: Dict[Tuple[str, str, date], MatchRecord] = {}
        latest_bar_dates: List[date] = []

        for index, batch in enumerate(batches):
            if self._cancel_requested:
                run.status = ScanStatus.CANCELLED
                break

            self.events.emit(BatchStarted(run_id=run.run_id, index=index, size=len(batch)))

            outcomes = await asyncio.gather(
                *(self._process_symbol(run.run_id, inst) for inst in batch)
            )

            batch_matches = self._fold(run, outcomes, matches, latest_bar_dates)
            run.matches = len(matches)

            # Checkpoint so a crash mid-run still leaves this batch's matches behind
            if batch_matches:
                await self._persist(run, "batch-checkpoint", self.store.upsert_matches(batch_matches))

            self.events.emit(
                BatchCompleted(
                    run_id=run.run_id,
                    index=index,
                    total_batches=run.batches,
                    processed=run.processed,
                    matches=run.matches,
                    errors=run.errors,
                    error_rate=run.error_rate,
                )
            )

            if index < len(batches) - 1:
                await self._pace(run)

        # 4. Attribute the run to a trading date and persist
        if scan_date is None and latest_bar_dates:
            run.scan_date = max(latest_bar_dates)

        results = sorted(matches.values(), key=lambda m: (m.symbol, m.venue, m.scan_date))

        if run.status == ScanStatus.CANCELLED:
            # Partial output must not supersede a complete earlier run for the same day
            message = f"Scan cancelled after {run.processed}/{run.universe_size} symbols."
        else:
            # Only the run's own date onward is replaced. Matches built on older
            # data (a stale provider tail) are stored under their own key.
            current = [m for m in results if m.scan_date >= run.scan_date]
            stale = [m for m in results if m.scan_date < run.scan_date]

            await self._persist(run, "replace", self.store.replace_matches(run.scan_date, current))
            if stale:
                await self._persist(run, "stale-upsert", self.store.upsert_matches(stale))
            run.status = ScanStatus.COMPLETED
            message = (
                f"VCP scan completed. {run.matches} matches from {run.processed} symbols "
                f"({run.errors} errors)."
            )

        run.finished_at = datetime.now(timezone.utc)
        await self._persist(run, "record-run", self.store.record_run(run))

        self._status = run.status
        self._emit_finished(run)
        return ScanSummary.from_run(run, results, message)

    async def _process_symbol(self, run_id: str, inst: Instrument) -> SymbolOutcome:
        """Fetch + classify one symbol. Never raises; failures become an ERROR outcome."""
        try:
            fetched = await self.chain.fetch(inst.symbol, inst.venue)
            trace = self.classifier.explain(fetched.series)

            if trace.insufficient_history:
                status = SymbolStatus.INSUFFICIENT_HISTORY
            elif trace.match is not None:
                status = SymbolStatus.MATCHED
            else:
                status = SymbolStatus.NO_MATCH

            series = fetched.series
            outcome = SymbolOutcome(
                symbol=inst.symbol,
                venue=inst.venue,
                status=status,
                source=fetched.source,
                is_real=fetched.is_real,
                bars=len(series),
                as_of=series.latest.date if len(series) else None,
                match=trace.match,
                rejected_at=trace.rejected_at,
            )

        except Exception as e:
            outcome = SymbolOutcome(
                symbol=inst.symbol,
                venue=inst.venue,
                status=SymbolStatus.ERROR,
                error=f"{type(e).__name__}: {e}",
            )

        self.events.emit(
            SymbolProcessed(
                run_id=run_id,
                symbol=outcome.symbol,
                venue=outcome.venue,
                status=outcome.status,
                source=outcome.source,
                is_real=outcome.is_real,
                rejected_at=outcome.rejected_at,
                error=outcome.error,
            )
        )
        return outcome

    @staticmethod
    def _fold(
        run: ScanRun,
        outcomes: List[SymbolOutcome],
        matches: Dict[Tuple[str, str, date], MatchRecord],
        latest_bar_dates: List[date],
    ) -> List[MatchRecord]:
        """Adds one batch of outcomes to the run counters. Order of outcomes is irrelevant."""
        batch_matches = []

        for outcome in outcomes:
            run.processed += 1

            if outcome.status == SymbolStatus.ERROR:
                run.errors += 1
                continue

            if outcome.as_of is not None:
                latest_bar_dates.append(outcome.as_of)

            if outcome.status == SymbolStatus.INSUFFICIENT_HISTORY:
                run.insufficient_history += 1
                continue

            run.succeeded += 1
            if outcome.is_real:
                run.real_data += 1
            else:
                run.synthetic_data += 1

            if outcome.match is not None:
                matches[outcome.match.key] = outcome.match
                batch_matches.append(outcome.match)

        return batch_matches

    async def _pace(self, run: ScanRun) -> None:
        """Inter-batch delay; longer once the run's error rate passes the threshold."""
        if run.error_rate > self.config.error_rate_threshold:
            delay = self.config.backoff_delay_seconds
            self.events.emit(
                BackoffApplied(run_id=run.run_id, delay_seconds=delay, error_rate=run.error_rate)
            )
        else:
            delay = self.config.batch_delay_seconds

        if delay > 0:
            await self._sleep(delay)

    async def _persist(self, run: ScanRun, stage: str, operation: Awaitable) -> None:
        # OSError covers connection drops a store did not translate itself
        try:
            await operation
        except (PersistenceFailure, OSError) as e:
            run.persist_errors += 1
            self.events.emit(PersistFailed(run_id=run.run_id, stage=stage, error=str(e)))

    async def _fail(self, run: ScanRun, message: str, store_ok: bool = True) -> ScanSummary:
        run.status = ScanStatus.FAILED
        run.error_message = message
        run.finished_at = datetime.now(timezone.utc)

        if store_ok:
            await self._persist(run, "record-run", self.store.record_run(run))

        self._status = ScanStatus.FAILED
        self._emit_finished(run)
        return ScanSummary.from_run(run, [], f"Scan failed: {message}")

    def _emit_finished(self, run: ScanRun) -> None:
        self.events.emit(
            RunFinished(
                run_id=run.run_id,
                status=run.status,
                scan_date=run.scan_date,
                processed=run.processed,
                matches=run.matches,
                errors=run.errors,
                duration_seconds=run.duration_seconds,
                error_message=run.error_message,
            )
        )


async def run_scan(
    mode: ScanMode = ScanMode.FULL,
    symbols: Optional[Sequence[SymbolSpec]] = None,
    scan_date: Optional[date] = None,
    *,
    settings=None,
    log_manager=None,
    chain: ProviderChain | None = None,
    store: ResultStore | None = None,
    dry_run: bool = False,
) -> ScanSummary:
    """
    Scan trigger. Wires config, logging, the provider chain and the store,
    runs one scan and returns its summary once everything is persisted.
    Collaborators passed in are left open; the ones built here are closed.
    """
    settings = settings or default_settings

    if log_manager is None:
        log_manager = LogManager("scanner-worker", debug=settings.system.debug)
    logger = log_manager.get_logger("scan-engine")

    owns_chain = chain is None
    owns_store = store is None

    if chain is None:
        chain = build_provider_chain(settings, log_manager)
    if store is None:
        store_logger = log_manager.get_logger("result-store")
        store = (
            InMemoryResultStore(logger=store_logger)
            if dry_run
            else SqlResultStore(url=settings.db.URL, logger=store_logger)
        )

    events = EventBus(logger)
    events.subscribe(LoggingEventSink(logger))

    engine = ScanEngine(
        chain=chain,
        classifier=VCPClassifier(min_history_bars=settings.scanner.min_history_bars),
        store=store,
        config=settings.scanner,
        logger=logger,
        events=events,
    )

    try:
        return await engine.run(mode, symbols=symbols, scan_date=scan_date)
    finally:
        if owns_chain:
            await chain.aclose()
        if owns_store:
            await store.close()
