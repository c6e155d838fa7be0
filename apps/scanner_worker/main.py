# apps/scanner_worker/main.py

import asyncio
import argparse
import sys
from datetime import datetime

from packages.contracts.vocabulary.general import ScanMode, ScanStatus
from packages.quant_lib.config import settings
from packages.quant_lib.errors import PersistenceFailure, UniverseError
from packages.quant_lib.logging import LogManager
from apps.scanner_worker.engine import run_scan
from apps.scanner_worker.store import SqlResultStore, export_matches_csv
from apps.scanner_worker.universe import load_universe_file


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Horizon VCP Scanner")
    parser.add_argument(
        "--mode",
        choices=[m.value for m in ScanMode],
        default=ScanMode.FULL.value,
        help="full = configured universe, custom = --symbols / --symbols-file.",
    )
    parser.add_argument(
        "--symbols",
        type=str,
        default=None,
        help="Comma separated SYMBOL[:VENUE] list, e.g. RELIANCE:NSE,TCS:NSE",
    )
    parser.add_argument(
        "--symbols-file",
        type=str,
        default=None,
        help="CSV (symbol[,exchange]) or text file of symbols for a custom scan.",
    )
    parser.add_argument(
        "--scan-date",
        type=str,
        default=None,
        help="YYYY-MM-DD. Attribute the run to this date instead of the latest bar date.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Keep results in memory only. Nothing is written to the database.",
    )
    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create the scanner tables before scanning.",
    )
    parser.add_argument(
        "--export-csv",
        type=str,
        default=None,
        help="Write this run's matches to the given CSV path.",
    )
    return parser


async def main(argv=None) -> int:
    # 1. Parse Arguments
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.mode == ScanMode.FULL and (args.symbols or args.symbols_file):
        parser.error("--symbols / --symbols-file only apply to --mode custom")

    # 2. Setup Infrastructure
    log_manager = LogManager(service_name="scanner-worker", debug=settings.system.debug)
    logger = log_manager.get_logger("main")

    logger.info(
        f"Initializing Scanner Worker | Mode: {args.mode} | "
        f"Providers: {settings.providers.order} | Dry run: {args.dry_run}"
    )

    try:
        # 3. Resolve inputs
        scan_date = None
        if args.scan_date:
            try:
                scan_date = datetime.strptime(args.scan_date, "%Y-%m-%d").date()
            except ValueError:
                logger.error("Invalid date format. Use YYYY-MM-DD.")
                return 2

        symbols = []
        if args.symbols:
            symbols.extend(s.strip() for s in args.symbols.split(",") if s.strip())
        if args.symbols_file:
            symbols.extend(load_universe_file(args.symbols_file, settings.scanner.default_venue))

        if args.mode == ScanMode.CUSTOM and not symbols:
            logger.error("Custom mode needs --symbols or --symbols-file.")
            return 2

        # 4. Schema
        if args.init_db and not args.dry_run:
            store = SqlResultStore(url=settings.db.URL, logger=log_manager.get_logger("result-store"))
            try:
                await store.init_schema()
            finally:
                await store.close()

        # 5. Scan
        summary = await run_scan(
            ScanMode(args.mode),
            symbols=symbols or None,
            scan_date=scan_date,
            settings=settings,
            log_manager=log_manager,
            dry_run=args.dry_run,
        )

        logger.info(
            f"Summary | processed={summary.processed} succeeded={summary.succeeded} "
            f"real={summary.real_data_rate:.0%} errors={summary.errors} "
            f"matches={summary.matches} hit_rate={summary.hit_rate:.1%}"
        )
        for match in summary.results:
            logger.info(
                f"  {match.symbol:<12} {match.venue:<6} close={match.close_price:>10.2f} "
                f"from_high={match.percent_from_52w_high:>6.2f}% breakout={match.breakout_signal}"
            )

        # 6. Export
        if args.export_csv:
            path = export_matches_csv(summary.results, args.export_csv)
            if path:
                logger.success(f"Exported {len(summary.results)} matches to {path}")
            else:
                logger.warning("No matches to export.")

        return 1 if summary.status == ScanStatus.FAILED else 0

    except (UniverseError, PersistenceFailure) as e:
        logger.error(f"Scanner Worker aborted: {e}")
        return 1

    except Exception as e:
        logger.exception("CRITICAL FAILURE in Scanner Worker")
        raise e


def cli():
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
