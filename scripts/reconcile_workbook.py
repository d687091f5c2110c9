"""
Command-line reconciliation of a master workbook against the product catalog.

Usage:
    python scripts/reconcile_workbook.py "DB Produktvergleich.xlsx"
    python scripts/reconcile_workbook.py input.xlsx --output out.xlsx --concurrency 8 --tolerance 2
    python scripts/reconcile_workbook.py --key A2V00001234567

Outputs:
    - DB_Produktvergleich_verarbeitet.xlsx next to the input (or --output)
    - per-product verdict summary on stdout
"""

import argparse
import logging
import os
import sys

_SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
_PROJECT_ROOT = os.path.join(_SCRIPT_DIR, '..')
sys.path.insert(0, os.path.join(_PROJECT_ROOT, 'src'))

import pandas as pd

from config import ReconcileConfig, ReconcileError, configure_logging
from fetcher import ProductPageFetcher
from reconciler import OUTPUT_FILENAME, process_workbook, summarize_report, verdict_counts
from retrieval import fetch_single

logger = logging.getLogger('reconcile_workbook')


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description=__doc__.strip().splitlines()[0])
    parser.add_argument('input', nargs='?', help="master workbook (.xlsx)")
    parser.add_argument('--output', help=f"output path (default: {OUTPUT_FILENAME} next to the input)")
    parser.add_argument('--key', help="look up a single article number instead of a workbook")
    parser.add_argument('--concurrency', type=int, help="parallel catalog requests")
    parser.add_argument('--tolerance', type=float, help="weight tolerance in percent")
    parser.add_argument('--log-level', default=None, help="logging level (default: LOG_LEVEL or INFO)")
    args = parser.parse_args(argv)
    if not args.input and not args.key:
        parser.error("either an input workbook or --key is required")
    return args


def run_single(key: str, fetcher: ProductPageFetcher) -> None:
    record = fetch_single(key, fetcher)
    for name, value in record.as_dict().items():
        print(f"{name:>24}: {value}")


def run_workbook(path: str, output_path: str, fetcher: ProductPageFetcher, config: ReconcileConfig) -> None:
    with open(path, 'rb') as f:
        data = f.read()

    def on_progress(done, total):
        if done == total or done % 25 == 0:
            logger.info("Fetched %d/%d", done, total)

    output, report = process_workbook(data, fetcher, config, on_progress)
    with open(output_path, 'wb') as f:
        f.write(output)

    df_summary = summarize_report(report)
    counts = verdict_counts(df_summary)
    pd.set_option('display.width', 200)
    pd.set_option('display.max_columns', None)
    print(df_summary.to_string(index=False) if len(df_summary) else "No product rows found.")
    print()
    print(f"Products: {len(df_summary)}  |  " + "  |  ".join(f"{k}: {v}" for k, v in counts.items()))
    print(f"Catalog lookups: {report.fetched} ok, {report.failed} failed")
    print(f"Saved: {output_path}")


def main(argv=None) -> int:
    args = parse_args(argv)
    level = logging.getLevelName(args.log_level.upper()) if args.log_level else None
    configure_logging(level=level if isinstance(level, int) else None)

    try:
        config = ReconcileConfig.from_environment().with_overrides(
            concurrency=args.concurrency,
            weight_tolerance_pct=args.tolerance,
        )
        fetcher = ProductPageFetcher(timeout=config.fetch_timeout_seconds)
        try:
            if args.key:
                run_single(args.key, fetcher)
            else:
                output_path = args.output or os.path.join(os.path.dirname(os.path.abspath(args.input)), OUTPUT_FILENAME)
                run_workbook(args.input, output_path, fetcher, config)
        finally:
            fetcher.close()
    except (ReconcileError, OSError) as e:
        logger.error("%s", e)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
