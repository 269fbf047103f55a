"""
Subscription & Team Migrator

Bulk-migrates customer records through a billing provider and an internal
team-provisioning API.

Supports:
- Cancelling existing subscriptions and clearing open billing objects
- Creating backdated, discounted replacement subscriptions
- Region-selectable team provisioning
- Batched, rate-limit aware processing with per-record outcomes
- CSV intake and downloadable CSV reports
"""

__version__ = "0.1.0"
