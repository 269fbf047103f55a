"""Shared route dependencies."""

from typing import AsyncIterator

from fastapi import Depends

from ..clients.billing import BillingClient
from ..models.config import Settings
from ..orchestrator import run_batch


def get_settings() -> Settings:
    """Process settings, read from the environment per request."""
    return Settings.from_env()


def get_runner():
    """The coroutine that executes a run."""
    return run_batch


async def get_billing_client(settings: Settings = Depends(get_settings)) -> AsyncIterator[BillingClient]:
    """A billing client scoped to one request."""
    client = BillingClient(settings.require_billing_key())
    try:
        yield client
    finally:
        await client.aclose()
