# apps/scanner_worker/sources/chain.py

from typing import List

from packages.contracts.scan import FetchFailure, FetchResult
from packages.contracts.vocabulary.general import FailureKind
from packages.quant_lib.errors import (
    InsufficientHistory,
    ProviderTransientFailure,
    ProviderUnavailable,
)
from packages.quant_lib.interfaces import DataSource
from packages.quant_lib.logging import get_null_logger


class ProviderChain:
    """
    Tries real sources in priority order and falls back to the synthetic
    generator. A source only wins if its series reaches `min_accept_bars`.
    The chain as a whole never fails; callers learn via `is_real` whether
    the data came from a market source.
    """

    def __init__(
        self,
        sources: List[DataSource],
        fallback: DataSource,
        min_accept_bars: int = 200,
        logger=None,
    ):
        self.sources = list(sources)
        self.fallback = fallback
        self.min_accept_bars = min_accept_bars
        self.logger = logger or get_null_logger("provider-chain")

    @property
    def names(self) -> List[str]:
        return [s.name for s in self.sources] + [self.fallback.name]

    async def fetch(self, symbol: str, venue: str) -> FetchResult:
        failures: List[FetchFailure] = []

        for source in self.sources:
            try:
                series = await source.fetch(symbol, venue)
                if len(series) < self.min_accept_bars:
                    raise InsufficientHistory(source.name, len(series), self.min_accept_bars)

            except ProviderUnavailable as e:
                failures.append(_failure(source, FailureKind.UNAVAILABLE, e.reason))
                continue

            except InsufficientHistory as e:
                self.logger.debug(f"{symbol}:{venue} | {e}")
                failures.append(_failure(source, FailureKind.INSUFFICIENT_HISTORY, e.reason))
                continue

            except ProviderTransientFailure as e:
                self.logger.warning(f"{symbol}:{venue} | {e}")
                failures.append(_failure(source, FailureKind.TRANSIENT, e.reason))
                continue

            except Exception as e:
                # A source leaking an untyped error is still just one failed provider.
                self.logger.warning(
                    f"{symbol}:{venue} | [{source.name}] unexpected {type(e).__name__}: {e}"
                )
                failures.append(
                    _failure(source, FailureKind.TRANSIENT, f"{type(e).__name__}: {e}")
                )
                continue

            return FetchResult(
                symbol=symbol,
                venue=venue,
                series=series,
                source=source.name,
                is_real=source.is_real,
                failures=tuple(failures),
            )

        series = await self.fallback.fetch(symbol, venue)
        self.logger.debug(
            f"{symbol}:{venue} | all real providers failed, using {self.fallback.name}"
        )
        return FetchResult(
            symbol=symbol,
            venue=venue,
            series=series,
            source=self.fallback.name,
            is_real=self.fallback.is_real,
            failures=tuple(failures),
        )

    async def aclose(self) -> None:
        for source in self.sources + [self.fallback]:
            await source.aclose()


def _failure(source: DataSource, kind: FailureKind, reason: str) -> FetchFailure:
    return FetchFailure(provider=source.name, kind=kind, reason=reason)
