# apps/scanner_worker/universe.py

import re
from pathlib import Path
from typing import Iterable, List, NamedTuple, Sequence, Tuple, Union

import polars as pl

from packages.contracts.vocabulary.general import ScanMode
from packages.quant_lib.config.scanner import ScannerConfig
from packages.quant_lib.errors import UniverseError

# Symbols containing any of these are funds / ETFs / debt instruments, not stocks.
ETF_KEYWORDS = [
    "ETF", "BEES", "INDEX", "FUND", "GOLD", "SILVER", "COMMODITY", "LIQUID", "DEBT",
    "BOND", "GILT", "TREASURY", "MUTUAL", "SCHEME", "PLAN", "GROWTH", "DIVIDEND",
]

SYMBOL_MIN_LEN = 2
SYMBOL_MAX_LEN = 20
_NON_ALNUM = re.compile(r"[^A-Z0-9]")
_TOKEN_SPLIT = re.compile(r"[\s,;|\t]+")


class Instrument(NamedTuple):
    symbol: str
    venue: str

    def __str__(self) -> str:
        return f"{self.symbol}:{self.venue}"


SymbolSpec = Union[str, Tuple[str, str], Instrument]


def clean_symbol(raw: str) -> str | None:
    """Upper-cases and strips punctuation. Returns None for anything that isn't a plausible ticker."""
    symbol = _NON_ALNUM.sub("", str(raw).strip().upper())
    if not (SYMBOL_MIN_LEN <= len(symbol) <= SYMBOL_MAX_LEN):
        return None
    if not symbol[0].isalpha():
        return None
    return symbol


def is_etf(symbol: str) -> bool:
    upper = symbol.upper()
    return any(keyword in upper for keyword in ETF_KEYWORDS)


def parse_spec(spec: SymbolSpec, default_venue: str) -> Instrument | None:
    """Accepts "RELIANCE", "RELIANCE:NSE", ("RELIANCE", "NSE") or an Instrument."""
    if isinstance(spec, tuple):
        raw_symbol, raw_venue = spec
    elif ":" in spec:
        raw_symbol, raw_venue = spec.split(":", 1)
    else:
        raw_symbol, raw_venue = spec, default_venue

    symbol = clean_symbol(raw_symbol)
    if symbol is None or is_etf(symbol):
        return None

    venue = (raw_venue or default_venue).strip().upper() or default_venue
    return Instrument(symbol, venue)


def dedupe(instruments: Iterable[Instrument]) -> List[Instrument]:
    """Removes duplicate (symbol, venue) pairs, keeping first-seen order."""
    seen = set()
    unique = []
    for inst in instruments:
        if inst not in seen:
            seen.add(inst)
            unique.append(inst)
    return unique


def parse_pairs(text: str, default_venue: str) -> List[Instrument]:
    """Parses a comma separated "SYMBOL:VENUE" list (venue optional)."""
    parsed = (parse_spec(token, default_venue) for token in text.split(",") if token.strip())
    return dedupe(p for p in parsed if p is not None)


def load_universe_file(path: str | Path, default_venue: str) -> List[Instrument]:
    """
    Loads symbols from a file.

    CSV files with a `symbol` column (and optionally `exchange` or `venue`) are
    read column-wise. Anything else, including CSVs without a symbol header,
    is scanned token by token.
    """
    path = Path(path)
    if not path.exists():
        raise UniverseError(f"Universe file not found: {path}")

    if path.suffix.lower() == ".csv":
        try:
            df = pl.read_csv(path, infer_schema_length=0)
        except Exception as e:
            raise UniverseError(f"Could not read {path}: {e}") from e

        columns = {c.strip().lower(): c for c in df.columns}
        if "symbol" in columns:
            venue_col = columns.get("exchange") or columns.get("venue")
            instruments = []
            for row in df.iter_rows(named=True):
                venue = row.get(venue_col) if venue_col else None
                parsed = parse_spec((row[columns["symbol"]] or "", venue or default_venue), default_venue)
                if parsed is not None:
                    instruments.append(parsed)
            return dedupe(instruments)

    # Free text: every token that looks like a ticker
    text = path.read_text(encoding="utf-8", errors="ignore")
    tokens = (parse_spec(t, default_venue) for t in _TOKEN_SPLIT.split(text) if t)
    return dedupe(t for t in tokens if t is not None)


def build_universe(
    mode: ScanMode,
    config: ScannerConfig,
    symbols: Sequence[SymbolSpec] | None = None,
    logger=None,
) -> List[Instrument]:
    """
    Resolves the deduplicated list of instruments for a run.
    Raises UniverseError when nothing usable is left, which fails the run.
    """
    if mode == ScanMode.CUSTOM:
        if not symbols:
            raise UniverseError("Custom scan requested without symbols.")

        parsed = (parse_spec(s, config.default_venue) for s in symbols)
        universe = dedupe(p for p in parsed if p is not None)

        if len(universe) > config.max_custom_symbols:
            if logger:
                logger.warning(
                    f"Custom universe has {len(universe)} symbols. "
                    f"Keeping the first {config.max_custom_symbols}."
                )
            universe = universe[: config.max_custom_symbols]

    elif mode == ScanMode.FULL:
        if config.universe_file:
            universe = load_universe_file(config.universe_file, config.default_venue)
        else:
            universe = parse_pairs(config.universe, config.default_venue)

    else:
        raise UniverseError(f"Unknown scan mode: {mode}")

    if not universe:
        raise UniverseError(f"Universe for mode '{mode}' is empty.")

    if logger:
        logger.info(f"Universe resolved: {len(universe)} instruments ({mode}).")
    return universe


def chunked(items: Sequence[Instrument], size: int) -> List[List[Instrument]]:
    """Fixed-size batches; the last one may be shorter."""
    if size < 1:
        raise ValueError("Batch size must be >= 1")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]
