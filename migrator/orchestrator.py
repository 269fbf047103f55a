"""Batch orchestrator - coordinates a complete migration run."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Mapping, Optional, Sequence, TypeVar

from .clients.billing import BillingClient
from .clients.team import TeamClient
from .exceptions import ConfigurationError, InvalidRequestError
from .models.config import BatchTimings, ProcessingConfig, ProcessingMode, Settings
from .models.record import InputRecord, OutcomeRecord, RecordStatus
from .models.run import BatchRun, RunPhase
from .services.processor import RecordProcessor
from .services.retry import Sleep

logger = logging.getLogger(__name__)

T = TypeVar("T")


def partition(records: Sequence[T], batch_size: int) -> List[List[T]]:
    """Split records into consecutive, order-preserving batches."""
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    return [list(records[i:i + batch_size]) for i in range(0, len(records), batch_size)]


def merge_outcomes(
    outcomes: Sequence[OutcomeRecord],
    updates: Mapping[str, OutcomeRecord],
) -> List[OutcomeRecord]:
    """
    Replace outcomes by external_id, keeping order and length.

    Outcomes without an update are returned unchanged.
    """
    return [updates.get(outcome.external_id, outcome) for outcome in outcomes]


def validate_records(payload: Any) -> List[InputRecord]:
    """
    Turn a raw request payload into InputRecords.

    Raises:
        InvalidRequestError: If the payload is not a list, an entry is not an
            object or misses a field, or an external id appears twice
    """
    if not isinstance(payload, list):
        raise InvalidRequestError("records must be a list")

    records = []
    seen = set()
    for idx, item in enumerate(payload):
        if isinstance(item, InputRecord):
            record = item
        elif isinstance(item, dict):
            record = InputRecord.from_dict(item)
        else:
            raise InvalidRequestError(f"Record {idx + 1} is not an object")

        missing = [name for name in ("external_id", "email", "team_name") if not getattr(record, name)]
        if missing:
            raise InvalidRequestError(f"Record {idx + 1} is missing: {', '.join(missing)}")
        if record.external_id in seen:
            raise InvalidRequestError(f"Duplicate external id: {record.external_id}")

        seen.add(record.external_id)
        records.append(record)

    return records


class BatchOrchestrator:
    """
    Orchestrates a complete batch run.

    Handles:
    - Partitioning input into fixed-size batches
    - Running each batch's records concurrently, one batch at a time
    - Inter-batch delays for each downstream system
    - The two-phase billing-then-team flow of combined runs
    - Order-preserving aggregation of one outcome per input record
    """

    def __init__(
        self,
        config: ProcessingConfig,
        billing: Optional[BillingClient] = None,
        team: Optional[TeamClient] = None,
        timings: Optional[BatchTimings] = None,
        team_max_attempts: int = 1,
        sleep: Optional[Sleep] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Run configuration, passed unchanged to every record
            billing: Billing client, required unless the run is team-only
            team: Team client, required unless the run is billing-only
            timings: Batch sizes and delays
            team_max_attempts: Attempts per team request
            sleep: Awaitable sleep, injectable for tests
        """
        if config.mode.includes_billing and billing is None:
            raise ConfigurationError(f"Mode {config.mode.value} needs a billing client")
        if config.mode.includes_team and team is None:
            raise ConfigurationError(f"Mode {config.mode.value} needs a team client")

        self.config = config
        self.timings = timings or BatchTimings()
        self._sleep = sleep or asyncio.sleep
        self.processor = RecordProcessor(
            config,
            billing=billing,
            team=team,
            settle_delay=self.timings.settle_delay,
            team_max_attempts=team_max_attempts,
            sleep=self._sleep,
        )

    async def run(self, records: Sequence[InputRecord]) -> BatchRun:
        """
        Run the batch.

        Returns:
            BatchRun holding exactly one outcome per input record, in input order
        """
        mode = self.config.mode
        run = BatchRun(mode=mode, region=self.config.region)
        run.started_at = datetime.now(timezone.utc)
        batch_size = self.timings.batch_size_for(mode)

        logger.info(
            f"Processing {len(records)} records in {mode.value} mode "
            f"(region: {self.config.region.value}, batch size: {batch_size})"
        )

        if mode is ProcessingMode.TEAM_ONLY:
            logger.info("=== TEAM PROVISIONING ===")
            run.outcomes = await self._run_phase(
                run, RunPhase.TEAM, list(records), batch_size,
                self.timings.team_batch_delay, self.processor.process_team,
            )

        else:
            logger.info("=== PHASE 1: BILLING ===")
            run.outcomes = await self._run_phase(
                run, RunPhase.BILLING, list(records), batch_size,
                self.timings.billing_batch_delay, self.processor.process_billing,
            )

            if mode is ProcessingMode.BOTH:
                logger.info("=== PHASE 2: TEAMS ===")
                run.outcomes = await self._run_team_phase(run, run.outcomes)

        run.completed_at = datetime.now(timezone.utc)
        totals = run.totals()
        logger.info(
            f"Processing complete: {totals['success']} success, {totals['partial']} partial, "
            f"{totals['failed']} failed ({run.duration_seconds:.1f}s)"
        )
        return run

    async def _run_team_phase(self, run: BatchRun, outcomes: List[OutcomeRecord]) -> List[OutcomeRecord]:
        """Create teams for the billing successes and merge the results back."""
        eligible = [o for o in outcomes if o.status is RecordStatus.SUCCESS]
        if not eligible:
            logger.info("No successful subscriptions, skipping team creation")
            return outcomes

        logger.info(
            f"Waiting {self.timings.propagation_delay:.0f}s for billing changes to propagate "
            f"before creating {len(eligible)} teams"
        )
        await self._sleep(self.timings.propagation_delay)

        updated = await self._run_phase(
            run, RunPhase.TEAM, eligible, self.timings.team_batch_size,
            self.timings.team_batch_delay, self.processor.process_team,
        )
        return merge_outcomes(outcomes, {o.external_id: o for o in updated})

    async def _run_phase(
        self,
        run: BatchRun,
        phase: RunPhase,
        items: List[Any],
        batch_size: int,
        delay: float,
        handler: Callable[[Any], Awaitable[OutcomeRecord]],
    ) -> List[OutcomeRecord]:
        """Process items batch by batch, waiting for each batch before the next."""
        batches = partition(items, batch_size)
        results: List[OutcomeRecord] = []

        for idx, batch_items in enumerate(batches):
            summary = run.add_batch(phase, batch_items)
            logger.info(
                f"{phase.value.capitalize()} batch {summary.number}/{len(batches)} "
                f"({len(batch_items)} records)"
            )

            batch_results = await asyncio.gather(
                *(self._process_safely(handler, item) for item in batch_items)
            )
            results.extend(batch_results)

            summary.succeeded = sum(1 for r in batch_results if r.status is RecordStatus.SUCCESS)
            summary.failed = len(batch_results) - summary.succeeded
            summary.completed_at = datetime.now(timezone.utc)
            logger.info(
                f"{phase.value.capitalize()} batch {summary.number} results: "
                f"{summary.succeeded} success, {summary.failed} failed"
            )

            if idx < len(batches) - 1:
                logger.info(f"Waiting {delay:.1f}s before next {phase.value} batch...")
                await self._sleep(delay)

        return results

    async def _process_safely(
        self,
        handler: Callable[[Any], Awaitable[OutcomeRecord]],
        item: Any,
    ) -> OutcomeRecord:
        """Guarantee an outcome for the item even if the handler raises."""
        try:
            return await handler(item)
        except ConfigurationError:
            raise
        except Exception as e:
            logger.error(f"Unexpected error for {item.external_id}: {e}")
            if isinstance(item, OutcomeRecord):
                return item.with_team_failure(f"Team creation failed: {e}")
            status = (
                RecordStatus.TEAM_CREATION_FAILED
                if self.config.mode is ProcessingMode.TEAM_ONLY
                else RecordStatus.SUBSCRIPTION_FAILED
            )
            return OutcomeRecord.for_record(item, status, error_message=f"Processing failed: {e}")


async def run_batch(
    records: Any,
    config: ProcessingConfig,
    settings: Settings,
    sleep: Optional[Sleep] = None,
) -> BatchRun:
    """
    Validate the records, build per-run clients from settings, and run.

    Raises:
        InvalidRequestError: For a malformed record list (nothing is processed)
        ConfigurationError: For missing credentials or an unknown region
    """
    input_records = validate_records(records)
    timings = settings.timings

    billing = None
    team = None
    try:
        if config.mode.includes_billing:
            billing = BillingClient(settings.require_billing_key(), sleep=sleep)
        if config.mode.includes_team:
            team = TeamClient(
                settings.require_team_token(),
                region=config.region.value,
                endpoints=settings.team_endpoints,
                sleep=sleep,
            )

        orchestrator = BatchOrchestrator(
            config,
            billing=billing,
            team=team,
            timings=timings,
            team_max_attempts=settings.team_max_attempts,
            sleep=sleep,
        )
        return await orchestrator.run(input_records)

    finally:
        for client in (billing, team):
            if client is not None:
                await client.aclose()
