# apps/scanner_worker/events.py
"""
Structured progress events for a scan.

The engine only emits these; turning them into text is the job of a sink
(LoggingEventSink below, or anything else subscribed to the bus).
"""

from dataclasses import dataclass
from datetime import date
from typing import Callable, List, Optional

from packages.contracts.vocabulary.general import ScanMode, ScanStatus, SymbolStatus
from packages.quant_lib.logging import get_null_logger


@dataclass(frozen=True)
class ScanEvent:
    run_id: str


@dataclass(frozen=True)
class RunStarted(ScanEvent):
    mode: ScanMode
    universe_size: int
    batches: int
    providers: List[str]


@dataclass(frozen=True)
class BatchStarted(ScanEvent):
    index: int
    size: int


@dataclass(frozen=True)
class SymbolProcessed(ScanEvent):
    symbol: str
    venue: str
    status: SymbolStatus
    source: Optional[str]
    is_real: bool
    rejected_at: Optional[str] = None
    error: Optional[str] = None


@dataclass(frozen=True)
class BatchCompleted(ScanEvent):
    index: int
    total_batches: int
    processed: int
    matches: int
    errors: int
    error_rate: float


@dataclass(frozen=True)
class BackoffApplied(ScanEvent):
    delay_seconds: float
    error_rate: float


@dataclass(frozen=True)
class PersistFailed(ScanEvent):
    stage: str
    error: str


@dataclass(frozen=True)
class RunFinished(ScanEvent):
    status: ScanStatus
    scan_date: date
    processed: int
    matches: int
    errors: int
    duration_seconds: float
    error_message: Optional[str] = None


EventHandler = Callable[[ScanEvent], None]


class EventBus:
    """Synchronous fan-out to subscribers. A failing subscriber never breaks the scan."""

    def __init__(self, logger=None):
        self._handlers: List[EventHandler] = []
        self.logger = logger or get_null_logger("events")

    def subscribe(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def emit(self, event: ScanEvent) -> None:
        for handler in self._handlers:
            try:
                handler(event)
            except Exception as e:
                self.logger.error(f"Event handler failed on {type(event).__name__}: {e}")


class LoggingEventSink:
    """Renders scan events as log lines."""

    def __init__(self, logger):
        self.logger = logger

    def __call__(self, event: ScanEvent) -> None:
        if isinstance(event, RunStarted):
            self.logger.info(
                f"--- VCP Scan {event.run_id[:8]} | Mode: {event.mode} | "
                f"{event.universe_size} symbols in {event.batches} batches | "
                f"Providers: {' -> '.join(event.providers)} ---"
            )

        elif isinstance(event, BatchStarted):
            self.logger.debug(f"Batch {event.index + 1}: {event.size} symbols")

        elif isinstance(event, SymbolProcessed):
            origin = "real" if event.is_real else "synthetic"
            if event.status == SymbolStatus.ERROR:
                self.logger.warning(f"{event.symbol}:{event.venue} | ERROR | {event.error}")
            elif event.status == SymbolStatus.MATCHED:
                self.logger.success(
                    f"{event.symbol}:{event.venue} | VCP MATCH | {event.source} ({origin})"
                )
            else:
                self.logger.debug(
                    f"{event.symbol}:{event.venue} | {event.status} | "
                    f"{event.source} ({origin}) | rejected_at={event.rejected_at}"
                )

        elif isinstance(event, BatchCompleted):
            self.logger.info(
                f"  Batch {event.index + 1}/{event.total_batches}: "
                f"processed={event.processed} matches={event.matches} "
                f"errors={event.errors} ({event.error_rate:.1%})"
            )

        elif isinstance(event, BackoffApplied):
            self.logger.warning(
                f"Error rate {event.error_rate:.1%} above threshold. "
                f"Backing off {event.delay_seconds:.1f}s."
            )

        elif isinstance(event, PersistFailed):
            self.logger.error(f"Persistence failed ({event.stage}): {event.error}")

        elif isinstance(event, RunFinished):
            line = (
                f"Scan {event.status} for {event.scan_date}: {event.matches} matches from "
                f"{event.processed} symbols ({event.errors} errors) in {event.duration_seconds:.1f}s"
            )
            if event.status == ScanStatus.COMPLETED:
                self.logger.success(line)
            elif event.status == ScanStatus.FAILED:
                self.logger.error(f"{line} | {event.error_message}")
            else:
                self.logger.warning(line)
