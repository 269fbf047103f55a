"""Error types raised across the migrator."""

from typing import Any, Optional


class MigratorError(Exception):
    """Base class for migrator errors."""


class ConfigurationError(MigratorError):
    """Missing credentials or an invalid configuration value."""


class InvalidRequestError(MigratorError):
    """A malformed run request or input file. Nothing was processed."""


class BillingError(MigratorError):
    """An error returned by the billing provider."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class RateLimitError(BillingError):
    """The billing provider asked us to slow down."""


class MaxRetriesExceeded(MigratorError):
    """A retryable call kept failing until the attempt cap was reached."""

    def __init__(self, attempts: int, last_error: Exception):
        super().__init__(f"Max retries ({attempts}) exceeded: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class TeamAPIError(MigratorError):
    """A non-2xx response or transport failure from the team API."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
