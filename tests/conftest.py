"""Shared fakes for the migrator tests."""

import asyncio
from datetime import date
from typing import Dict, List, Optional

import httpx
import pytest

from migrator.clients.team import TeamResult
from migrator.exceptions import BillingError
from migrator.models.config import ProcessingConfig, ProcessingMode, Region
from migrator.models.record import InputRecord


class RecordingSleep:
    """Awaitable sleep that records delays instead of waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


class FakeBilling:
    """
    In-memory billing provider.

    Behaviour is keyed by email: ``missing`` emails have no customer,
    ``cancel_fails`` emails fail cancellation and ``create_fails`` emails
    fail subscription creation.
    """

    def __init__(
        self,
        missing=(),
        cancel_fails=(),
        create_fails=(),
        lookup_errors=(),
        currency: Optional[str] = "cad",
        sleep: Optional[RecordingSleep] = None,
    ):
        self.missing = set(missing)
        self.cancel_fails = set(cancel_fails)
        self.create_fails = set(create_fails)
        self.lookup_errors = set(lookup_errors)
        self.currency = currency
        self.sleep = sleep
        self.calls: List[tuple] = []
        self.closed = False
        self.in_flight = 0
        self.max_in_flight = 0
        self._emails: Dict[str, str] = {}

    async def _enter(self):
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0)
        self.in_flight -= 1

    async def find_customer_by_email(self, email: str):
        self.calls.append(("find", email))
        await self._enter()
        if email in self.lookup_errors:
            raise BillingError("search unavailable", status_code=500)
        if email in self.missing:
            return None
        customer_id = f"cus_{email.split('@')[0]}"
        self._emails[customer_id] = email
        return {"id": customer_id, "email": email, "currency": self.currency}

    async def cancel_active_subscriptions(self, customer_id: str) -> bool:
        self.calls.append(("cancel", customer_id))
        await self._enter()
        return self._emails[customer_id] not in self.cancel_fails

    async def clear_billing_objects(self, customer_id: str) -> bool:
        self.calls.append(("clear", customer_id))
        await self._enter()
        return True

    async def create_subscription(self, customer_id: str, config: ProcessingConfig):
        self.calls.append(("create", customer_id))
        await self._enter()
        if self._emails[customer_id] in self.create_fails:
            raise BillingError("No such price: 'price_x'", status_code=400)
        return {"id": f"sub_{customer_id[4:]}", "status": "active", "currency": config.currency}

    def calls_for(self, kind: str) -> List[str]:
        return [arg for name, arg in self.calls if name == kind]

    async def aclose(self):
        self.closed = True


class FakeTeam:
    """In-memory team API; ``failures`` maps owner ids to an HTTP status."""

    def __init__(self, failures: Optional[Dict[str, int]] = None):
        self.failures = failures or {}
        self.created: List[str] = []
        self.retry_calls: List[tuple] = []
        self.closed = False

    async def create_team(self, external_id, team_name, options) -> TeamResult:
        self.created.append(external_id)
        await asyncio.sleep(0)
        status = self.failures.get(external_id)
        if status:
            return TeamResult(
                success=False,
                error_message=f"HTTP {status}",
                http_status=status,
                response_body={"detail": f"HTTP {status}"},
            )
        return TeamResult(success=True, team_ref=f"team-{external_id}", http_status=201)

    async def create_team_with_retry(self, external_id, team_name, options, max_attempts=3, base_delay=1.0):
        self.retry_calls.append((external_id, max_attempts))
        return await self.create_team(external_id, team_name, options)

    async def aclose(self):
        self.closed = True


def make_records(count: int) -> List[InputRecord]:
    return [
        InputRecord(external_id=f"u{i}", email=f"user{i}@example.com", team_name=f"Team {i}")
        for i in range(1, count + 1)
    ]


def make_config(mode: ProcessingMode = ProcessingMode.BOTH, **kwargs) -> ProcessingConfig:
    params = dict(
        mode=mode,
        price_ref="price_annual",
        coupon_ref="LOYAL50",
        start_date=date(2024, 3, 1),
        currency="cad",
        region=Region.CA,
    )
    params.update(kwargs)
    return ProcessingConfig(**params)


def mock_http(handler) -> httpx.AsyncClient:
    """HTTP client whose requests are answered by ``handler``."""
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def recording_sleep():
    return RecordingSleep()
