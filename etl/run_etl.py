#!/usr/bin/env python3
"""
ETL Pipeline CLI
Command-line interface for the Hankinnat procurement data pipeline.
"""

import asyncio
import argparse
import sys
from pathlib import Path
from typing import List, Optional
import logging

# Make the etl package importable when run as a script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from etl.hankinnat.catalog_client import CatalogClient
from etl.hankinnat.config import ApiSettings, CatalogConfig, PipelineSettings, get_db_config
from etl.hankinnat.database import Database, InvoiceRepository
from etl.hankinnat.ledger import ImportLedger
from etl.hankinnat.orchestrator import PipelineOrchestrator


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler('etl_pipeline.log')
        ]
    )


def parse_years(value: str) -> List[int]:
    """Parse a comma separated year list such as ``2023,2024``."""
    try:
        years = [int(part.strip()) for part in value.split(',') if part.strip()]
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid year list: {value!r}") from None
    if not years:
        raise argparse.ArgumentTypeError("at least one year is required")
    return years


async def run_update(args) -> int:
    """Download and import procurement data."""
    print("Finnish Procurement Data Updater (avoindata.fi)")
    if args.years:
        print(f"Years: {', '.join(str(y) for y in args.years)}")
    if args.clear:
        print("Clearing ALL existing invoices and ledger rows before import (all years)")

    async with Database(get_db_config()) as database:
        await database.initialize_schema()

        orchestrator = PipelineOrchestrator(
            database,
            catalog_config=CatalogConfig.from_env(),
            settings=PipelineSettings.from_env()
        )
        results = await orchestrator.run(
            years=args.years,
            force_redownload=args.force,
            clear_existing=args.clear
        )

    print_results(results)
    return 0


async def run_serve(args) -> int:
    """Serve the REST query API until interrupted."""
    from aiohttp import web
    from etl.hankinnat.api import create_app
    from etl.hankinnat.query_service import InvoiceQueryService

    settings = ApiSettings.from_env()
    host = args.host or settings.host
    port = args.port or settings.port

    async with Database(get_db_config()) as database:
        await database.initialize_schema()
        app = create_app(InvoiceQueryService(database), InvoiceRepository(database), settings)

        runner = web.AppRunner(app)
        await runner.setup()
        site = web.TCPSite(runner, host, port)
        await site.start()
        print(f"Procurement Data API listening on http://{host}:{port}")
        print(f"  Health: http://{host}:{port}/api/health")
        try:
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()

    return 0


async def run_stats(args) -> int:
    """Print database statistics and the import ledger."""
    async with Database(get_db_config()) as database:
        await database.initialize_schema()
        stats = await InvoiceRepository(database).get_statistics()
        entries = await ImportLedger(database).list_entries()

    print_statistics(stats)
    print_ledger(entries)
    return 0


async def test_connection(args) -> int:
    """Test catalog and database connections."""
    print("Testing connections...")

    print("\nTesting catalog connection...")
    try:
        async with CatalogClient(CatalogConfig.from_env()) as client:
            dataset = await client.fetch_dataset_metadata()
            print(f"✓ Catalog connection successful. Found {len(dataset.resources)} resources "
                  f"in '{dataset.title}'.")
    except Exception as e:
        print(f"✗ Catalog connection failed: {e}")
        return 1

    print("\nTesting database connection...")
    try:
        async with Database(get_db_config()) as database:
            await database.initialize_schema()
            stats = await InvoiceRepository(database).get_statistics()
            print("✓ Database connection successful.")
            print(f"  Total invoices: {stats.get('total_invoices', 0):,}")
    except Exception as e:
        print(f"✗ Database connection failed: {e}")
        return 1

    print("\n✓ All connections successful!")
    return 0


def print_statistics(stats):
    """Print database statistics."""
    print("\nDatabase Summary:")
    print(f"  Total invoices: {stats.get('total_invoices', 0):,}")
    print(f"  Dataset files: {stats.get('dataset_files', 0)}")
    print(f"  Last update: {stats.get('last_update') or 'Just now'}")

    breakdown = stats.get('year_breakdown') or []
    if breakdown:
        print("\nYear Breakdown:")
        for row in breakdown:
            count = row.get('count') or 0
            total_value = float(row.get('total_value') or 0)
            average = total_value / count if count else 0
            print(f"  {row.get('data_year')}:")
            print(f"    Invoices: {count:,}")
            print(f"    Total Value: €{total_value / 1_000_000:.2f}M")
            print(f"    Average: €{average:.2f}")


def print_ledger(entries):
    """Print the latest import attempt of every resource."""
    if not entries:
        print("\nImported files: none")
        return

    print("\nImported files:")
    for entry in entries:
        line = (f"  {entry.get('resource_name')} [{entry.get('status')}] "
                f"{entry.get('records_imported') or 0:,} records")
        if entry.get('error_message'):
            line += f" - {entry['error_message']}"
        print(line)


def print_results(results):
    """Print pipeline results."""
    print("\n" + "="*50)
    print("Pipeline Results")
    print("="*50)

    print(f"Status: {results['status']}")

    if results.get('duration_seconds'):
        duration = results['duration_seconds']
        if duration < 60:
            print(f"Duration: {duration:.2f} seconds")
        else:
            minutes = int(duration // 60)
            seconds = duration % 60
            print(f"Duration: {minutes}m {seconds:.0f}s")

    print(f"\nDownloads:")
    print(f"  Downloaded: {results['files_downloaded']}")
    print(f"  Skipped: {results['files_skipped']}")

    print(f"\nImport:")
    print(f"  Files processed: {results['files_processed']}")
    print(f"  Successful: {results['successful']}")
    print(f"  Total records: {results['total_records']:,}")
    print(f"  Rejected records: {results['total_errors']:,}")

    failed = [r for r in results.get('results', []) if not r['success']]
    if failed:
        print(f"\nFailed files: {len(failed)}")
        for result in failed:
            print(f"  - {result['filename']}: {result['error']}")

    if results.get('statistics'):
        print_statistics(results['statistics'])

    print("="*50)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Hankinnat ETL Pipeline CLI',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Download and import all years
  python run_etl.py update

  # Only 2024 and 2025
  python run_etl.py update --years=2024,2025

  # Fresh start, redownload everything
  python run_etl.py update --force --clear

  # Serve the query API
  python run_etl.py serve --port 3001

  # Test connections
  python run_etl.py test
        """
    )

    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )

    subparsers = parser.add_subparsers(
        dest='command',
        help='Command to run'
    )

    parser_update = subparsers.add_parser(
        'update',
        help='Download and import procurement data files'
    )
    parser_update.add_argument(
        '--years',
        type=parse_years,
        help='Comma-separated list of years to process (default: all)'
    )
    parser_update.add_argument(
        '--force',
        action='store_true',
        help='Force re-download even if files exist'
    )
    parser_update.add_argument(
        '--clear',
        action='store_true',
        help='Clear ALL existing data (every year) before import'
    )
    parser_update.set_defaults(func=run_update)

    parser_serve = subparsers.add_parser(
        'serve',
        help='Serve the REST query API'
    )
    parser_serve.add_argument('--host', help='Bind address')
    parser_serve.add_argument('--port', type=int, help='Listen port')
    parser_serve.set_defaults(func=run_serve)

    parser_stats = subparsers.add_parser(
        'stats',
        help='Print database statistics'
    )
    parser_stats.set_defaults(func=run_stats)

    parser_test = subparsers.add_parser(
        'test',
        help='Test catalog and database connections'
    )
    parser_test.set_defaults(func=test_connection)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    # Setup logging
    setup_logging(args.verbose)

    # Run the command
    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        print("\n\nPipeline interrupted by user.")
        return 130
    except Exception as e:
        print(f"\nError: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == '__main__':
    sys.exit(main())
