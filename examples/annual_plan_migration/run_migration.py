#!/usr/bin/env python3
"""
Example: move customers to a discounted annual plan and give each a team

This script demonstrates how to use the migrator as a library rather than
through the CLI or HTTP API.

Usage:
    # Demo against in-process fake services (no credentials needed)
    python run_migration.py --demo

    # Real run, credentials from STRIPE_SECRET_KEY and TEAM_API_TOKEN
    python run_migration.py --input customers.csv --config config.json
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

import httpx

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from migrator.clients.billing import BillingClient
from migrator.clients.team import TeamClient
from migrator.models.config import BatchTimings, ProcessingConfig, Settings
from migrator.models.record import STATUS_PRESENTATION
from migrator.orchestrator import BatchOrchestrator, run_batch
from migrator.services.intake import load_records_csv
from migrator.services.report import report_filename, write_report

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler('migration.log')
    ]
)
logger = logging.getLogger(__name__)

HERE = Path(__file__).parent


def log_results(run):
    """Log the outcome of a run."""
    totals = run.totals()
    logger.info("=" * 60)
    logger.info("RUN COMPLETE")
    logger.info("=" * 60)
    logger.info(f"Succeeded: {totals['success']}")
    logger.info(f"Partial: {totals['partial']}")
    logger.info(f"Failed: {totals['failed']}")

    if run.duration_seconds:
        logger.info(f"Duration: {run.duration_seconds:.2f} seconds")

    for outcome in run.outcomes:
        presentation = STATUS_PRESENTATION[outcome.status]
        logger.info(f"  {presentation.icon} {outcome.email}: {presentation.label}")


def fake_billing_handler(request: httpx.Request) -> httpx.Response:
    """Answer billing requests the way the provider would for a small account."""
    path = request.url.path
    if path.endswith("/customers/search"):
        email = request.url.params["query"].split("'")[1]
        if email.startswith("missing"):
            return httpx.Response(200, json={"data": []})
        return httpx.Response(200, json={"data": [{"id": f"cus_{email.split('@')[0]}", "currency": "usd"}]})
    if path.endswith("/subscriptions") and request.method == "GET":
        return httpx.Response(200, json={"data": [{"id": "sub_old", "status": "active"}], "has_more": False})
    if path.endswith("/subscriptions") and request.method == "POST":
        return httpx.Response(200, json={"id": "sub_new", "status": "active", "currency": "cad"})
    if request.method == "GET":
        return httpx.Response(200, json={"data": [], "has_more": False})
    return httpx.Response(200, json={"id": path.rsplit("/", 1)[-1], "deleted": True})


def fake_team_handler(request: httpx.Request) -> httpx.Response:
    body = json.loads(request.content)
    if body["owner_id"] == "1003":
        return httpx.Response(409, json={"detail": {"msg": "Owner already has a team"}})
    return httpx.Response(201, json={"id": f"team-{body['owner_id']}"})


async def run_demo():
    """
    Demo run with sample data (no API calls needed).

    Uses the real clients over a mock transport, with delays shortened.
    """
    logger.info("Running demo with sample data...")

    records = load_records_csv(HERE / "customers.csv")
    with open(HERE / "config.json") as f:
        config = ProcessingConfig.from_dict(json.load(f))

    timings = BatchTimings(propagation_delay=0.5, billing_batch_delay=0.1, team_batch_delay=0.1, settle_delay=0.0)

    async with BillingClient(
        "sk_demo", http_client=httpx.AsyncClient(transport=httpx.MockTransport(fake_billing_handler))
    ) as billing, TeamClient(
        "demo-token", http_client=httpx.AsyncClient(transport=httpx.MockTransport(fake_team_handler))
    ) as team:
        orchestrator = BatchOrchestrator(config, billing=billing, team=team, timings=timings)
        run = await orchestrator.run(records)

    log_results(run)
    return run


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Annual plan and team migration"
    )
    parser.add_argument(
        "--demo",
        action="store_true",
        help="Run demo with sample data (no API keys needed)"
    )
    parser.add_argument(
        "--input",
        default=str(HERE / "customers.csv"),
        help="Path to customer CSV"
    )
    parser.add_argument(
        "--config",
        default=str(HERE / "config.json"),
        help="Path to run config JSON"
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output"
    )

    args = parser.parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.demo:
        asyncio.run(run_demo())
        return

    records = load_records_csv(args.input)
    with open(args.config) as f:
        config = ProcessingConfig.from_dict(json.load(f))

    settings = Settings.from_env()
    if not settings.billing_api_key or not settings.team_api_token:
        logger.error("Missing required environment variables: STRIPE_SECRET_KEY, TEAM_API_TOKEN")
        logger.info("Set these or use --demo")
        sys.exit(1)

    run = asyncio.run(run_batch(records, config, settings))
    log_results(run)

    output = report_filename()
    with open(output, "w", newline="", encoding="utf-8") as f:
        write_report(run.outcomes, f)
    logger.info(f"Report written to {output}")


if __name__ == "__main__":
    main()
