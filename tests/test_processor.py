import asyncio

import pytest
from unittest.mock import AsyncMock

from conftest import FakeBilling, FakeTeam, RecordingSleep, make_config
from migrator.exceptions import ConfigurationError
from migrator.models.config import ProcessingMode
from migrator.models.record import InputRecord, OutcomeRecord, RecordStatus
from migrator.services.processor import RecordProcessor


class TestBillingSteps:
    """Test the per-record billing state machine."""

    def setup_method(self):
        self.record = InputRecord(external_id="u1", email="jane@example.com", team_name="Jane's Team")
        self.sleep = RecordingSleep()
        self.config = make_config(ProcessingMode.BILLING_ONLY)

    def process(self, billing, team=None, include_team=False, **kwargs):
        processor = RecordProcessor(self.config, billing=billing, team=team, sleep=self.sleep, **kwargs)
        return asyncio.run(processor.process_billing(self.record, include_team=include_team))

    def test_success(self):
        billing = FakeBilling()

        outcome = self.process(billing)

        assert outcome.status == RecordStatus.SUCCESS
        assert outcome.customer_ref == "cus_jane"
        assert outcome.subscription_ref == "sub_jane"
        assert outcome.old_currency == "cad"
        assert outcome.new_currency == "cad"
        assert outcome.start_date == "2024-03-01"
        assert outcome.coupon_ref == "LOYAL50"
        assert outcome.error_message is None
        assert outcome.warnings == []
        assert self.sleep.delays == [0.3]
        assert [name for name, _ in billing.calls] == ["find", "cancel", "clear", "create"]

    def test_cancel_and_clear_run_side_by_side(self):
        billing = FakeBilling()

        self.process(billing)

        assert billing.max_in_flight == 2

    def test_customer_not_found(self):
        billing = FakeBilling(missing={"jane@example.com"})

        outcome = self.process(billing)

        assert outcome.status == RecordStatus.CUSTOMER_NOT_FOUND
        assert outcome.error_message == "Customer not found in billing provider"
        assert outcome.customer_ref is None
        assert billing.calls_for("cancel") == []

    def test_lookup_error(self):
        billing = FakeBilling(lookup_errors={"jane@example.com"})

        outcome = self.process(billing)

        assert outcome.status == RecordStatus.CUSTOMER_NOT_FOUND
        assert outcome.error_message.startswith("Customer lookup failed:")

    def test_cancel_failed(self):
        billing = FakeBilling(cancel_fails={"jane@example.com"})

        outcome = self.process(billing)

        assert outcome.status == RecordStatus.CANCEL_FAILED
        assert outcome.error_message == "Failed to cancel existing subscriptions"
        assert outcome.customer_ref == "cus_jane"
        assert outcome.subscription_ref is None
        assert billing.calls_for("create") == []

    def test_subscription_failed(self):
        billing = FakeBilling(create_fails={"jane@example.com"})

        outcome = self.process(billing)

        assert outcome.status == RecordStatus.SUBSCRIPTION_FAILED
        assert outcome.error_message.startswith("Failed to create subscription:")
        assert "No such price" in outcome.error_message
        assert outcome.subscription_ref is None

    def test_currency_change_is_a_warning(self):
        billing = FakeBilling(currency="usd")

        outcome = self.process(billing)

        assert outcome.status == RecordStatus.SUCCESS
        assert outcome.old_currency == "usd"
        assert outcome.new_currency == "cad"
        assert outcome.warnings == ["Currency changed from USD to CAD"]

    def test_customer_without_currency(self):
        outcome = self.process(FakeBilling(currency=None))

        assert outcome.status == RecordStatus.SUCCESS
        assert outcome.old_currency is None
        assert outcome.warnings == []

    def test_unexpected_error_becomes_subscription_failed(self):
        billing = FakeBilling()
        billing.cancel_active_subscriptions = AsyncMock(side_effect=RuntimeError("socket closed"))

        outcome = self.process(billing)

        assert outcome.status == RecordStatus.SUBSCRIPTION_FAILED
        assert outcome.error_message == "Processing failed: socket closed"

    def test_inline_team_success(self):
        outcome = self.process(FakeBilling(), team=FakeTeam(), include_team=True)

        assert outcome.status == RecordStatus.SUCCESS
        assert outcome.team_ref == "team-u1"
        assert outcome.subscription_ref == "sub_jane"

    def test_inline_team_failure_keeps_billing_refs(self):
        outcome = self.process(FakeBilling(), team=FakeTeam(failures={"u1": 500}), include_team=True)

        assert outcome.status == RecordStatus.TEAM_CREATION_FAILED
        assert outcome.customer_ref == "cus_jane"
        assert outcome.subscription_ref == "sub_jane"
        assert outcome.team_ref is None
        assert outcome.team_http_status == 500
        assert outcome.team_error_message == "HTTP 500"

    def test_requires_billing_client(self):
        with pytest.raises(ConfigurationError):
            self.process(None)


class TestTeamStep:
    """Test the team step on its own."""

    def setup_method(self):
        self.record = InputRecord(external_id="u7", email="sam@example.com", team_name="Sam Co")
        self.config = make_config(ProcessingMode.TEAM_ONLY)

    def test_team_only_success(self):
        processor = RecordProcessor(self.config, team=FakeTeam())

        outcome = asyncio.run(processor.process_team(self.record))

        assert outcome.status == RecordStatus.SUCCESS
        assert outcome.team_ref == "team-u7"
        assert outcome.customer_ref is None
        assert outcome.subscription_ref is None

    def test_team_only_failure(self):
        processor = RecordProcessor(self.config, team=FakeTeam(failures={"u7": 404}))

        outcome = asyncio.run(processor.process_team(self.record))

        assert outcome.status == RecordStatus.TEAM_CREATION_FAILED
        assert outcome.team_http_status == 404
        assert outcome.team_response_body == {"detail": "HTTP 404"}

    def test_upgrades_billing_outcome_without_mutating_it(self):
        billed = OutcomeRecord.for_record(
            self.record, RecordStatus.SUCCESS, customer_ref="cus_1", subscription_ref="sub_1",
            warnings=["Currency changed from USD to CAD"],
        )
        processor = RecordProcessor(self.config, team=FakeTeam())

        outcome = asyncio.run(processor.process_team(billed))

        assert outcome is not billed
        assert billed.team_ref is None
        assert outcome.team_ref == "team-u7"
        assert outcome.customer_ref == "cus_1"
        assert outcome.warnings == ["Currency changed from USD to CAD"]

    def test_uses_retry_when_configured(self):
        team = FakeTeam()
        processor = RecordProcessor(self.config, team=team, team_max_attempts=2)

        asyncio.run(processor.process_team(self.record))

        assert team.retry_calls == [("u7", 2)]

    def test_single_attempt_by_default(self):
        team = FakeTeam()
        processor = RecordProcessor(self.config, team=team)

        asyncio.run(processor.process_team(self.record))

        assert team.retry_calls == []
        assert team.created == ["u7"]

    def test_requires_team_client(self):
        processor = RecordProcessor(self.config)

        with pytest.raises(ConfigurationError):
            asyncio.run(processor.process_team(self.record))
