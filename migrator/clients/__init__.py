"""Clients for the remote services a run talks to."""

from .base import BaseClient
from .billing import BillingClient, ConfigOptions
from .team import TeamClient, TeamResult

__all__ = [
    "BaseClient",
    "BillingClient",
    "ConfigOptions",
    "TeamClient",
    "TeamResult",
]
