from enum import Enum


class StrEnum(str, Enum):
    """Base class to make enums behave like strings for easy use in Pydantic/JSON."""

    def __str__(self):
        return self.value


class ScanMode(StrEnum):
    """Which universe a scan runs over."""

    FULL = "full"  # The whole configured universe
    CUSTOM = "custom"  # A caller-supplied symbol list


class ScanStatus(StrEnum):
    """Lifecycle of one scan run. Terminal states are never left."""

    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ScanStatus.COMPLETED, ScanStatus.FAILED, ScanStatus.CANCELLED)


class FailureKind(StrEnum):
    """Why a single provider did not deliver a series."""

    UNAVAILABLE = "unavailable"  # No credential / venue not served. Not an error.
    TRANSIENT = "transient"  # Timeout, HTTP error, bad payload, rate limit
    INSUFFICIENT_HISTORY = "insufficient_history"


class SymbolStatus(StrEnum):
    """Outcome of one symbol's acquisition + classification task."""

    MATCHED = "matched"
    NO_MATCH = "no_match"
    INSUFFICIENT_HISTORY = "insufficient_history"
    ERROR = "error"


class Venue(StrEnum):
    """Exchanges the scanner knows how to route."""

    NSE = "NSE"  # National Stock Exchange of India
    BSE = "BSE"  # Bombay Stock Exchange
    NASDAQ = "NASDAQ"
    NYSE = "NYSE"
    ARCA = "ARCA"
    AMEX = "AMEX"


US_VENUES = {Venue.NASDAQ.value, Venue.NYSE.value, Venue.ARCA.value, Venue.AMEX.value}
