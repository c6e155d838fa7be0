import pytest

from apps.scanner_worker.universe import (
    Instrument,
    build_universe,
    chunked,
    clean_symbol,
    is_etf,
    load_universe_file,
    parse_pairs,
)
from packages.contracts.vocabulary.general import ScanMode
from packages.quant_lib.config.scanner import DEFAULT_UNIVERSE, ScannerConfig
from packages.quant_lib.errors import UniverseError


class TestSymbolCleaning:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("reliance", "RELIANCE"),
            (" M&M ", "MM"),
            ("BAJAJ-AUTO", "BAJAJAUTO"),
            ("X", None),  # too short
            ("3MINDIA", None),  # must start with a letter
            ("A" * 21, None),
            ("", None),
        ],
    )
    def test_clean_symbol(self, raw, expected):
        assert clean_symbol(raw) == expected

    @pytest.mark.parametrize("symbol", ["NIFTYBEES", "GOLDETF", "LIQUIDCASE", "SBIGILT"])
    def test_funds_are_flagged(self, symbol):
        assert is_etf(symbol)

    def test_stocks_are_not_flagged(self):
        assert not is_etf("RELIANCE")


class TestParsing:
    def test_pairs_with_default_venue_and_dedupe(self):
        parsed = parse_pairs("RELIANCE:NSE, tcs , RELIANCE:NSE, INFY:bse, NIFTYBEES:NSE", "NSE")
        assert parsed == [
            Instrument("RELIANCE", "NSE"),
            Instrument("TCS", "NSE"),
            Instrument("INFY", "BSE"),
        ]

    def test_same_symbol_on_two_venues_is_two_instruments(self):
        assert len(parse_pairs("TCS:NSE,TCS:BSE", "NSE")) == 2

    def test_default_universe_is_clean(self):
        universe = parse_pairs(DEFAULT_UNIVERSE, "NSE")
        assert len(universe) == len(set(universe)) > 20
        assert {inst.venue for inst in universe} == {"NSE", "BSE"}


class TestUniverseFile:
    def test_csv_with_exchange_column(self, tmp_path):
        path = tmp_path / "stocks.csv"
        path.write_text("Symbol,Exchange\nRELIANCE,NSE\nTCS,BSE\nGOLDBEES,NSE\nRELIANCE,NSE\n")

        assert load_universe_file(path, "NSE") == [
            Instrument("RELIANCE", "NSE"),
            Instrument("TCS", "BSE"),
        ]

    def test_csv_without_exchange_uses_default(self, tmp_path):
        path = tmp_path / "stocks.csv"
        path.write_text("symbol\nwipro\nsbin\n")
        assert load_universe_file(path, "BSE") == [Instrument("WIPRO", "BSE"), Instrument("SBIN", "BSE")]

    def test_free_text(self, tmp_path):
        path = tmp_path / "watchlist.txt"
        path.write_text("RELIANCE TCS\nINFY;HDFCBANK, 1234, NIFTYBEES\n")
        assert [i.symbol for i in load_universe_file(path, "NSE")] == [
            "RELIANCE",
            "TCS",
            "INFY",
            "HDFCBANK",
        ]

    def test_missing_file(self, tmp_path):
        with pytest.raises(UniverseError):
            load_universe_file(tmp_path / "nope.csv", "NSE")


class TestBuildUniverse:
    def test_full_mode_uses_configured_pairs(self):
        config = ScannerConfig(universe="AAA:NSE,BBB:BSE")
        assert build_universe(ScanMode.FULL, config) == [Instrument("AAA", "NSE"), Instrument("BBB", "BSE")]

    def test_full_mode_prefers_universe_file(self, tmp_path):
        path = tmp_path / "u.txt"
        path.write_text("ZZZ")
        config = ScannerConfig(universe="AAA:NSE", universe_file=str(path))
        assert build_universe(ScanMode.FULL, config) == [Instrument("ZZZ", "NSE")]

    def test_custom_mode_caps_symbol_count(self):
        config = ScannerConfig(max_custom_symbols=3)
        symbols = [f"SYM{i}" for i in range(10)]
        assert len(build_universe(ScanMode.CUSTOM, config, symbols)) == 3

    def test_custom_mode_accepts_tuples(self):
        universe = build_universe(ScanMode.CUSTOM, ScannerConfig(), [("aapl", "nasdaq"), "TCS"])
        assert universe == [Instrument("AAPL", "NASDAQ"), Instrument("TCS", "NSE")]

    @pytest.mark.parametrize("symbols", [None, [], ["1", "NIFTYBEES"]])
    def test_empty_custom_universe_is_an_error(self, symbols):
        with pytest.raises(UniverseError):
            build_universe(ScanMode.CUSTOM, ScannerConfig(), symbols)


def test_chunked_keeps_remainder():
    items = [Instrument(f"S{i}", "NSE") for i in range(5)]
    assert [len(b) for b in chunked(items, 2)] == [2, 2, 1]
