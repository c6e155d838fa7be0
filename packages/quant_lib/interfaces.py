# packages/quant_lib/interfaces.py

from abc import ABC, abstractmethod
from datetime import date
from typing import List, Protocol

from packages.contracts.market import PriceSeries
from packages.contracts.scan import MatchRecord, ScanRun


class DataSource(ABC):
    """
    Abstract Base Class for all daily price sources.
    Any new provider (Polygon, NSE bhavcopy, etc.) must inherit from this.

    Implementations raise the typed errors from packages.quant_lib.errors:
    ProviderUnavailable when they cannot serve the request at all,
    ProviderTransientFailure for timeouts / bad payloads / throttling.
    Anything else escaping `fetch` is treated as transient by the chain.
    """

    #: Short identifier used in logs and on FetchResult.source
    name: str = "unknown"

    #: False only for generated data
    is_real: bool = True

    @abstractmethod
    async def fetch(self, symbol: str, venue: str) -> PriceSeries:
        """Returns the daily series for (symbol, venue), oldest bar first."""
        pass

    async def aclose(self) -> None:
        """Releases network clients. Sources without resources keep the default."""
        return None


class ResultStore(Protocol):
    """Persistence boundary for scan output. Performs no business validation."""

    async def open(self) -> None:
        """Verifies the store is reachable. Raises PersistenceFailure if not."""
        ...

    async def upsert_matches(self, matches: List[MatchRecord]) -> int:
        """Writes matches, replacing any stored row with the same (symbol, venue, scan_date)."""
        ...

    async def replace_matches(self, scan_date: date, matches: List[MatchRecord]) -> int:
        """Deletes matches dated on/after scan_date, then inserts `matches`."""
        ...

    async def record_run(self, run: ScanRun) -> None:
        """Appends one run metadata row."""
        ...

    async def close(self) -> None: ...
