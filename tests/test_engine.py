import pytest

from apps.scanner_worker.classifier import VCPClassifier
from apps.scanner_worker.engine import ScanEngine, run_scan
from apps.scanner_worker.events import (
    BackoffApplied,
    BatchStarted,
    EventBus,
    PersistFailed,
    RunFinished,
    SymbolProcessed,
)
from apps.scanner_worker.sources.chain import ProviderChain
from apps.scanner_worker.sources.synthetic import SyntheticSource
from apps.scanner_worker.store import InMemoryResultStore
from packages.contracts.vocabulary.general import ScanMode, ScanStatus, SymbolStatus
from packages.quant_lib.config.scanner import ScannerConfig
from packages.quant_lib.errors import PersistenceFailure, ProviderTransientFailure
from packages.quant_lib.logging import LogManager

from tests.factories import SERIES_END, FakeSource, vcp_series


class RecordingSleep:
    def __init__(self, on_sleep=None):
        self.delays = []
        self.on_sleep = on_sleep

    async def __call__(self, delay):
        self.delays.append(delay)
        if self.on_sleep:
            self.on_sleep()


class BrokenStore(InMemoryResultStore):
    def __init__(self, fail_on, error=None):
        super().__init__()
        self.fail_on = set(fail_on)
        self.error = error

    def _raise(self, default_message):
        raise self.error or PersistenceFailure(default_message)

    async def open(self):
        if "open" in self.fail_on:
            self._raise("connection refused")

    async def upsert_matches(self, matches):
        if "upsert" in self.fail_on:
            self._raise("disk full")
        return await super().upsert_matches(matches)

    async def replace_matches(self, scan_date, matches):
        if "replace" in self.fail_on:
            self._raise("disk full")
        return await super().replace_matches(scan_date, matches)

    async def record_run(self, run):
        if "record" in self.fail_on:
            self._raise("disk full")
        return await super().record_run(run)


def fake_chain(real=None, errors=None, fallback=None):
    """One real fake source plus a fallback that fails unless told otherwise."""
    source = FakeSource("fake", series=real or {}, errors=errors or {})
    fallback = fallback or FakeSource(
        "synthetic", is_real=False, errors={"BOOM": RuntimeError("generator crashed")}
    )
    return ProviderChain([source], fallback, min_accept_bars=100)


def make_engine(chain, store=None, sleep=None, **config):
    config.setdefault("batch_delay_seconds", 0.5)
    events = EventBus()
    seen = []
    events.subscribe(seen.append)
    engine = ScanEngine(
        chain=chain,
        classifier=VCPClassifier(),
        store=store or InMemoryResultStore(),
        config=ScannerConfig(**config),
        events=events,
        sleep=sleep or RecordingSleep(),
    )
    return engine, seen


def of_type(events, kind):
    return [e for e in events if isinstance(e, kind)]


class TestBatching:
    async def test_five_symbols_in_batches_of_two(self):
        symbols = ["AAA", "BBB", "CCC", "DDD", "EEE"]
        chain = fake_chain({s: vcp_series(s) for s in symbols})
        sleep = RecordingSleep()
        engine, events = make_engine(chain, batch_size=2, sleep=sleep)

        summary = await engine.run(ScanMode.CUSTOM, symbols)

        assert [e.size for e in of_type(events, BatchStarted)] == [2, 2, 1]
        assert summary.batches == 3
        assert summary.processed == 5
        assert summary.matches == 5
        # Pacing only between batches
        assert sleep.delays == [0.5, 0.5]
        assert engine.status == ScanStatus.COMPLETED

    async def test_batch_size_one_still_processes_everything(self):
        chain = fake_chain({"AAA": vcp_series("AAA"), "BBB": vcp_series("BBB", scale=0.1)})
        engine, _ = make_engine(chain, batch_size=1)
        summary = await engine.run(ScanMode.CUSTOM, ["AAA", "BBB"])
        assert summary.batches == 2 and summary.processed == 2


class TestAccounting:
    async def test_processed_equals_succeeded_errors_and_insufficient(self):
        chain = fake_chain(
            {
                "GOOD": vcp_series("GOOD"),
                "FLAT": vcp_series("FLAT", scale=0.1),
                "SHORT": vcp_series("SHORT", bars=120),
            }
        )
        engine, events = make_engine(chain, batch_size=2)

        summary = await engine.run(ScanMode.CUSTOM, ["GOOD", "FLAT", "SHORT", "BOOM"])

        assert summary.status == ScanStatus.COMPLETED
        assert summary.processed == 4
        assert summary.succeeded == 2
        assert summary.insufficient_history == 1
        assert summary.errors == 1
        assert summary.processed == summary.succeeded + summary.errors + summary.insufficient_history
        assert [m.symbol for m in summary.results] == ["GOOD"]

        statuses = {e.symbol: e.status for e in of_type(events, SymbolProcessed)}
        assert statuses == {
            "GOOD": SymbolStatus.MATCHED,
            "FLAT": SymbolStatus.NO_MATCH,
            "SHORT": SymbolStatus.INSUFFICIENT_HISTORY,
            "BOOM": SymbolStatus.ERROR,
        }
        (boom,) = [e for e in of_type(events, SymbolProcessed) if e.symbol == "BOOM"]
        assert "generator crashed" in boom.error

    async def test_classifier_exception_is_isolated(self):
        class ExplodingClassifier(VCPClassifier):
            def explain(self, series):
                if series.symbol == "BAD":
                    raise ZeroDivisionError("bad data")
                return super().explain(series)

        chain = fake_chain({"BAD": vcp_series("BAD"), "GOOD": vcp_series("GOOD")})
        engine, _ = make_engine(chain)
        engine.classifier = ExplodingClassifier()

        summary = await engine.run(ScanMode.CUSTOM, ["BAD", "GOOD"])

        assert summary.errors == 1
        assert summary.matches == 1

    async def test_failing_event_handler_does_not_break_the_scan(self):
        chain = fake_chain({"GOOD": vcp_series("GOOD")})
        engine, _ = make_engine(chain)

        def explode(event):
            raise RuntimeError("subscriber bug")

        engine.events.subscribe(explode)
        summary = await engine.run(ScanMode.CUSTOM, ["GOOD"])
        assert summary.status == ScanStatus.COMPLETED


class TestBackoff:
    async def test_high_error_rate_lengthens_the_delay(self):
        chain = fake_chain({"AAA": vcp_series("AAA"), "CCC": vcp_series("CCC")})
        sleep = RecordingSleep()
        engine, events = make_engine(chain, batch_size=2, sleep=sleep, backoff_delay_seconds=5.0)

        await engine.run(ScanMode.CUSTOM, ["AAA", "BOOM", "CCC"])

        assert sleep.delays == [5.0]
        (backoff,) = of_type(events, BackoffApplied)
        assert backoff.error_rate == 0.5

    async def test_error_rate_at_threshold_keeps_normal_delay(self):
        symbols = [f"OK{i}" for i in range(9)]
        chain = fake_chain({s: vcp_series(s) for s in symbols + ["OK9"]})
        sleep = RecordingSleep()
        engine, events = make_engine(chain, batch_size=10, sleep=sleep)

        # 1 error in 10 is exactly 10%: not above the threshold
        await engine.run(ScanMode.CUSTOM, symbols + ["BOOM", "OK9"])

        assert sleep.delays == [0.5]
        assert of_type(events, BackoffApplied) == []


class TestLifecycle:
    async def test_cancel_stops_before_next_batch(self):
        symbols = ["AAA", "BBB", "CCC", "DDD"]
        chain = fake_chain({s: vcp_series(s) for s in symbols})
        store = InMemoryResultStore()
        sleep = RecordingSleep()
        engine, events = make_engine(chain, store=store, batch_size=2, sleep=sleep)
        sleep.on_sleep = engine.cancel

        summary = await engine.run(ScanMode.CUSTOM, symbols)

        assert summary.status == ScanStatus.CANCELLED
        assert summary.processed == 2
        assert engine.status == ScanStatus.CANCELLED
        assert len(of_type(events, BatchStarted)) == 1
        # The checkpointed batch is kept, and the run is still recorded
        assert {m.symbol for m in store.matches.values()} == {"AAA", "BBB"}
        assert store.runs[-1].status == ScanStatus.CANCELLED

    async def test_unreachable_store_fails_the_run(self):
        chain = fake_chain({"AAA": vcp_series("AAA")})
        engine, events = make_engine(chain, store=BrokenStore({"open"}))

        summary = await engine.run(ScanMode.CUSTOM, ["AAA"])

        assert summary.status == ScanStatus.FAILED
        assert "connection refused" in summary.message
        assert summary.processed == 0
        assert of_type(events, RunFinished)[0].error_message

    async def test_empty_universe_fails_the_run(self):
        store = InMemoryResultStore()
        engine, _ = make_engine(fake_chain(), store=store)

        summary = await engine.run(ScanMode.CUSTOM, [])

        assert summary.status == ScanStatus.FAILED
        assert store.runs[0].status == ScanStatus.FAILED
        assert store.runs[0].error_message

    async def test_persistence_errors_are_counted_not_fatal(self):
        chain = fake_chain({"AAA": vcp_series("AAA")})
        engine, events = make_engine(chain, store=BrokenStore({"upsert", "replace"}))

        summary = await engine.run(ScanMode.CUSTOM, ["AAA"])

        assert summary.status == ScanStatus.COMPLETED
        assert summary.persist_errors == 2
        assert [e.stage for e in of_type(events, PersistFailed)] == ["batch-checkpoint", "replace"]

    async def test_dropped_connection_while_writing_is_counted_not_fatal(self):
        chain = fake_chain({"AAA": vcp_series("AAA")})
        store = BrokenStore({"replace"}, error=ConnectionResetError("server closed the connection"))
        engine, events = make_engine(chain, store=store)

        summary = await engine.run(ScanMode.CUSTOM, ["AAA"])

        assert summary.status == ScanStatus.COMPLETED
        assert engine.status == ScanStatus.COMPLETED
        assert summary.persist_errors == 1
        (failed,) = of_type(events, PersistFailed)
        assert failed.stage == "replace"
        assert "server closed the connection" in failed.error
        # The run itself is still recorded
        assert store.runs[-1].persist_errors == 1

    async def test_unexpected_store_error_leaves_engine_reusable(self):
        chain = fake_chain({"AAA": vcp_series("AAA")})
        store = BrokenStore({"record"}, error=RuntimeError("driver bug"))
        engine, _ = make_engine(chain, store=store)

        with pytest.raises(RuntimeError, match="driver bug"):
            await engine.run(ScanMode.CUSTOM, ["AAA"])
        assert engine.status == ScanStatus.FAILED

        store.fail_on.clear()
        summary = await engine.run(ScanMode.CUSTOM, ["AAA"])
        assert summary.status == ScanStatus.COMPLETED
        assert engine.status == ScanStatus.COMPLETED

    async def test_engine_can_run_again_after_finishing(self):
        chain = fake_chain({"AAA": vcp_series("AAA")})
        engine, _ = make_engine(chain)
        first = await engine.run(ScanMode.CUSTOM, ["AAA"])
        second = await engine.run(ScanMode.CUSTOM, ["AAA"])
        assert first.run_id != second.run_id


class TestScanDate:
    async def test_defaults_to_latest_bar_date(self):
        chain = fake_chain({"AAA": vcp_series("AAA")})
        engine, _ = make_engine(chain)
        summary = await engine.run(ScanMode.CUSTOM, ["AAA"])
        assert summary.scan_date == SERIES_END

    async def test_caller_date_wins(self):
        from datetime import date

        chain = fake_chain({"AAA": vcp_series("AAA")})
        engine, _ = make_engine(chain)
        summary = await engine.run(ScanMode.CUSTOM, ["AAA"], scan_date=date(2024, 7, 1))
        assert summary.scan_date == date(2024, 7, 1)

    async def test_rerun_is_idempotent(self):
        chain = fake_chain({"AAA": vcp_series("AAA"), "BBB": vcp_series("BBB")})
        store = InMemoryResultStore()
        engine, _ = make_engine(chain, store=store)

        await engine.run(ScanMode.CUSTOM, ["AAA", "BBB"])
        await engine.run(ScanMode.CUSTOM, ["AAA", "BBB"])

        assert len(store.matches) == 2
        assert len(store.runs) == 2

    async def test_stale_match_does_not_clear_earlier_days(self):
        from datetime import date

        classifier = VCPClassifier()
        store = InMemoryResultStore()
        await store.upsert_matches(
            [
                classifier.classify(vcp_series("OLD1", end=date(2024, 3, 1))),
                classifier.classify(vcp_series("OLD2", end=date(2024, 5, 15))),
            ]
        )

        # STALE's provider stopped updating in January
        chain = fake_chain(
            {"FRESH": vcp_series("FRESH"), "STALE": vcp_series("STALE", end=date(2024, 1, 31))}
        )
        engine, _ = make_engine(chain, store=store)
        summary = await engine.run(ScanMode.CUSTOM, ["FRESH", "STALE"])

        assert summary.scan_date == SERIES_END
        assert summary.persist_errors == 0
        assert set(store.matches) == {
            ("OLD1", "NSE", date(2024, 3, 1)),
            ("OLD2", "NSE", date(2024, 5, 15)),
            ("FRESH", "NSE", SERIES_END),
            ("STALE", "NSE", date(2024, 1, 31)),
        }

    async def test_rerun_drops_matches_that_no_longer_qualify(self):
        store = InMemoryResultStore()
        engine, _ = make_engine(fake_chain({"AAA": vcp_series("AAA"), "BBB": vcp_series("BBB")}), store=store)
        await engine.run(ScanMode.CUSTOM, ["AAA", "BBB"])

        engine.chain = fake_chain({"AAA": vcp_series("AAA"), "BBB": vcp_series("BBB", scale=0.1)})
        await engine.run(ScanMode.CUSTOM, ["AAA", "BBB"])

        assert [m.symbol for m in await store.latest_matches()] == ["AAA"]


async def test_three_symbol_end_to_end():
    """A falls back to synthetic data, B fails the price filter, C matches."""
    chain = ProviderChain(
        [
            FakeSource(
                "fake",
                series={"BBB": vcp_series("BBB", scale=0.1), "CCC": vcp_series("CCC")},
                errors={"AAA": ProviderTransientFailure("fake", "HTTP 503")},
            )
        ],
        # Steady decline: random data that cannot pass the trend filters
        SyntheticSource(target_bars=300, drift=-0.01, seed=7),
        min_accept_bars=200,
    )
    store = InMemoryResultStore()
    engine, events = make_engine(chain, store=store)

    summary = await engine.run(ScanMode.CUSTOM, ["AAA", "BBB", "CCC"])

    processed = {e.symbol: e for e in of_type(events, SymbolProcessed)}
    assert processed["AAA"].is_real is False
    assert processed["AAA"].source == "synthetic"
    assert processed["BBB"].rejected_at == "min_price"
    assert processed["CCC"].status == SymbolStatus.MATCHED

    assert summary.real_data == 2 and summary.synthetic_data == 1
    assert [m.symbol for m in summary.results] == ["CCC"]

    series = vcp_series("CCC")
    (match,) = summary.results
    expected = series.latest.close > max(series.highs[-22:-1]) and series.latest.volume > 1.5 * (
        sum(series.volumes[-20:]) / 20
    )
    assert match.breakout_signal is expected is True
    assert [m.symbol for m in store.matches.values()] == ["CCC"]


async def test_run_scan_with_injected_chain(tmp_path):
    from packages.quant_lib.config import Settings

    chain = fake_chain({"CCC": vcp_series("CCC")})
    summary = await run_scan(
        ScanMode.CUSTOM,
        symbols=["CCC:NSE"],
        settings=Settings(),
        log_manager=LogManager("test", log_dir=tmp_path, file_logging=False),
        chain=chain,
        dry_run=True,
    )

    assert summary.status == ScanStatus.COMPLETED
    assert summary.matches == 1
    # Injected collaborators stay open for the caller
    assert chain.sources[0].closed is False


@pytest.mark.integration
async def test_live_custom_scan(tmp_path):
    summary = await run_scan(
        ScanMode.CUSTOM,
        symbols=["RELIANCE:NSE", "TCS:NSE"],
        log_manager=LogManager("test", log_dir=tmp_path, file_logging=False),
        dry_run=True,
    )
    assert summary.processed == 2
