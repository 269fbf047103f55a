"""Command line interface for the migrator."""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .clients.billing import BillingClient
from .exceptions import ConfigurationError, InvalidRequestError, MigratorError
from .models.config import ProcessingConfig, Settings
from .models.record import STATUS_PRESENTATION
from .models.run import BatchRun
from .orchestrator import run_batch, validate_records
from .services.intake import load_records_csv
from .services.report import report_filename, write_report

logger = logging.getLogger(__name__)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="Subscription & Team Migrator - move customers to a new subscription and team"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Run a batch
    run_parser = subparsers.add_parser("run", help="Process a customer CSV")
    run_parser.add_argument("--input", required=True, help="Path to customer CSV file")
    run_parser.add_argument("--config", help="Path to run config JSON file")
    run_parser.add_argument("--mode", choices=["billing_only", "team_only", "both"], help="Override processing mode")
    run_parser.add_argument("--region", help="Override team API region")
    run_parser.add_argument("--output", help="Report output path")
    run_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    # Check an input file
    check_parser = subparsers.add_parser("check", help="Validate a customer CSV without processing")
    check_parser.add_argument("--input", required=True, help="Path to customer CSV file")
    check_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    # List billing options
    options_parser = subparsers.add_parser("options", help="List prices, coupons and currencies")
    options_parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    args = parser.parse_args(argv)

    # Set up logging
    log_level = logging.DEBUG if getattr(args, "verbose", False) else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    try:
        if args.command == "run":
            return run_records(args)
        elif args.command == "check":
            return check_records(args)
        elif args.command == "options":
            return show_options(args)
        else:
            parser.print_help()
            return 1
    except InvalidRequestError as e:
        print(f"Invalid input: {e}", file=sys.stderr)
        return 2
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 3
    except MigratorError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def load_config(args) -> ProcessingConfig:
    """Build the run config from the file and command line overrides."""
    config_data: Dict[str, Any] = {}
    if args.config:
        try:
            with open(args.config) as f:
                config_data = json.load(f)
        except (OSError, ValueError) as e:
            raise InvalidRequestError(f"Could not read config {args.config}: {e}")

    if args.mode:
        config_data["mode"] = args.mode
    if args.region:
        config_data["region"] = args.region

    return ProcessingConfig.from_dict(config_data)


def run_records(args) -> int:
    """Process a CSV file end to end and write the report."""
    records = load_records_csv(args.input)
    config = load_config(args)
    settings = Settings.from_env()

    run = asyncio.run(run_batch(records, config, settings))

    output = Path(args.output or report_filename())
    with open(output, "w", newline="", encoding="utf-8") as f:
        write_report(run.outcomes, f)

    print_summary(run)
    print(f"Report: {output}")

    totals = run.totals()
    return 0 if totals["failed"] == 0 and totals["partial"] == 0 else 1


def print_summary(run: BatchRun):
    totals = run.totals()

    print("\n" + "=" * 60)
    print("RUN COMPLETE")
    print("=" * 60)
    print(f"Mode: {run.mode.value}")
    print(f"Region: {run.region.value}")
    print(f"Records: {totals['total']}")
    print(f"Succeeded: {totals['success']}")
    print(f"Partial: {totals['partial']}")
    print(f"Failed: {totals['failed']}")
    if run.duration_seconds:
        print(f"Duration: {run.duration_seconds:.2f} seconds")

    problems = [o for o in run.outcomes if o.status.is_failure or o.status.is_partial]
    if problems:
        print("\nProblems:")
        for outcome in problems:
            presentation = STATUS_PRESENTATION[outcome.status]
            print(f"  {presentation.icon} {outcome.email}: {presentation.label} - {outcome.error_message}")


def check_records(args) -> int:
    """Load and validate a CSV without calling any service."""
    records = validate_records(load_records_csv(args.input))

    print(f"\n{len(records)} valid records in {args.input}")
    for record in records[:10]:
        print(f"  {record.external_id}  {record.email}  {record.team_name}")
    if len(records) > 10:
        print(f"  ... and {len(records) - 10} more")
    return 0


def show_options(args) -> int:
    """Print the prices, coupons and currencies available for a run."""
    settings = Settings.from_env()

    async def fetch():
        async with BillingClient(settings.require_billing_key()) as billing:
            return await billing.get_config_options()

    options = asyncio.run(fetch())

    print("\n=== Prices ===")
    for price in options.prices:
        amount = price["unit_amount"]
        amount = f"{amount / 100:.2f}" if amount is not None else "-"
        print(f"  {price['id']}: {price['product']['name'] or price['nickname'] or ''} "
              f"{amount} {(price['currency'] or '').upper()}")

    print("\n=== Coupons ===")
    for coupon in options.coupons:
        off = f"{coupon['percent_off']}%" if coupon["percent_off"] else coupon["amount_off"]
        print(f"  {coupon['id']}: {coupon['name'] or ''} ({off} off, {coupon['duration']})")

    print(f"\nCurrencies: {', '.join(c.upper() for c in options.currencies) or 'none'}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
