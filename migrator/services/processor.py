"""Per-record processing: billing steps, then the optional team step."""

import asyncio
import logging
from typing import Optional, Union

from ..clients.billing import BillingClient
from ..clients.team import TeamClient
from ..exceptions import ConfigurationError, MigratorError
from ..models.config import ProcessingConfig
from ..models.record import InputRecord, OutcomeRecord, RecordStatus
from .retry import Sleep

logger = logging.getLogger(__name__)


class RecordProcessor:
    """
    Drives the clients through the steps for one record.

    Billing: customer lookup, then cancellation and cleanup side by side, a
    short settle delay, then the new subscription. The team step runs after
    a successful subscription when asked to, or on its own in team-only runs.

    Never raises for a record-level problem: every path ends in an
    OutcomeRecord with a status from the closed RecordStatus set.
    """

    def __init__(
        self,
        config: ProcessingConfig,
        billing: Optional[BillingClient] = None,
        team: Optional[TeamClient] = None,
        settle_delay: float = 0.3,
        team_max_attempts: int = 1,
        sleep: Optional[Sleep] = None,
    ):
        """
        Initialize the processor.

        Args:
            config: Run configuration
            billing: Billing client, required for billing steps
            team: Team client, required for the team step
            settle_delay: Pause between cancellation and subscription creation
            team_max_attempts: Attempts per team request (1 disables retry)
            sleep: Awaitable sleep, injectable for tests
        """
        self.config = config
        self.billing = billing
        self.team = team
        self.settle_delay = settle_delay
        self.team_max_attempts = team_max_attempts
        self._sleep = sleep or asyncio.sleep

    async def process_billing(self, record: InputRecord, include_team: bool = False) -> OutcomeRecord:
        """Run the billing steps for a record, then the team step if asked."""
        if self.billing is None:
            raise ConfigurationError("No billing client configured")

        outcome = OutcomeRecord.for_record(record, RecordStatus.SUBSCRIPTION_FAILED)
        try:
            return await self._process_billing(record, outcome, include_team)
        except Exception as e:
            logger.error(f"Error processing {record.email}: {e}")
            outcome.status = RecordStatus.SUBSCRIPTION_FAILED
            outcome.error_message = f"Processing failed: {e}"
            return outcome

    async def _process_billing(
        self,
        record: InputRecord,
        outcome: OutcomeRecord,
        include_team: bool,
    ) -> OutcomeRecord:
        try:
            customer = await self.billing.find_customer_by_email(record.email)
        except MigratorError as e:
            logger.error(f"Customer lookup failed for {record.email}: {e}")
            outcome.status = RecordStatus.CUSTOMER_NOT_FOUND
            outcome.error_message = f"Customer lookup failed: {e}"
            return outcome

        if customer is None:
            outcome.status = RecordStatus.CUSTOMER_NOT_FOUND
            outcome.error_message = "Customer not found in billing provider"
            return outcome

        outcome.customer_ref = customer["id"]
        outcome.old_currency = customer.get("currency") or None

        # Subscriptions and invoices are independent objects
        cancelled, cleared = await asyncio.gather(
            self.billing.cancel_active_subscriptions(outcome.customer_ref),
            self.billing.clear_billing_objects(outcome.customer_ref),
        )
        if not cleared:
            logger.warning(f"Billing cleanup incomplete for {outcome.customer_ref}")

        if not cancelled:
            outcome.status = RecordStatus.CANCEL_FAILED
            outcome.error_message = "Failed to cancel existing subscriptions"
            return outcome

        await self._sleep(self.settle_delay)

        try:
            subscription = await self.billing.create_subscription(outcome.customer_ref, self.config)
        except MigratorError as e:
            outcome.status = RecordStatus.SUBSCRIPTION_FAILED
            outcome.error_message = f"Failed to create subscription: {e}"
            return outcome

        outcome.status = RecordStatus.SUCCESS
        outcome.error_message = None
        outcome.subscription_ref = subscription["id"]
        outcome.new_currency = subscription.get("currency") or self.config.currency
        outcome.start_date = self.config.start_date_iso
        outcome.coupon_ref = self.config.coupon_ref

        if outcome.old_currency and outcome.old_currency.lower() != outcome.new_currency.lower():
            warning = (
                f"Currency changed from {outcome.old_currency.upper()} "
                f"to {outcome.new_currency.upper()}"
            )
            logger.warning(f"{record.email}: {warning}")
            outcome.warnings.append(warning)

        if include_team:
            return await self.process_team(outcome)
        return outcome

    async def process_team(self, target: Union[InputRecord, OutcomeRecord]) -> OutcomeRecord:
        """
        Create the team for a record.

        Given an OutcomeRecord from the billing phase, returns an upgraded copy;
        given an InputRecord (team-only runs), starts a fresh outcome.
        """
        if self.team is None:
            raise ConfigurationError("No team client configured")

        if isinstance(target, OutcomeRecord):
            base = target
        else:
            base = OutcomeRecord.for_record(target, RecordStatus.SUCCESS)

        options = self.config.team_options
        try:
            if self.team_max_attempts > 1:
                result = await self.team.create_team_with_retry(
                    base.external_id, base.team_name, options, max_attempts=self.team_max_attempts,
                )
            else:
                result = await self.team.create_team(base.external_id, base.team_name, options)
        except Exception as e:
            logger.error(f"Error creating team for {base.email}: {e}")
            return base.with_team_failure(f"Team creation failed: {e}")

        if result.success:
            return base.with_team_success(result.team_ref)
        return base.with_team_failure(
            result.error_message or "Team creation failed",
            http_status=result.http_status,
            response_body=result.response_body,
        )
