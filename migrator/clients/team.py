"""Team provisioning API client."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .base import BaseClient
from ..exceptions import ConfigurationError, MaxRetriesExceeded, TeamAPIError
from ..models.config import Region, TeamOptions
from ..services.retry import RetryPolicy, Sleep

logger = logging.getLogger(__name__)

REGION_ENDPOINTS: Dict[str, str] = {
    "ca": "https://api.ca.teams.internal/v1/teams",
    "us": "https://api.us.teams.internal/v1/teams",
    "au": "https://api.au.teams.internal/v1/teams",
    "eu": "https://api.eu.teams.internal/v1/teams",
    "uk": "https://api.uk.teams.internal/v1/teams",
}

# Bad credentials and unknown owners do not fix themselves
NON_RETRYABLE_STATUSES = (401, 404)


@dataclass
class TeamResult:
    """Outcome of one team creation request."""
    success: bool
    team_ref: Optional[str] = None
    error_message: Optional[str] = None
    http_status: Optional[int] = None
    response_body: Optional[Any] = None
    attempts: int = 1

    @classmethod
    def from_error(cls, error: TeamAPIError, attempts: int = 1) -> "TeamResult":
        return cls(
            success=False,
            error_message=error.message,
            http_status=error.status_code,
            response_body=error.response_body,
            attempts=attempts,
        )


def extract_error_message(body: Any, status_code: Optional[int]) -> str:
    """
    Best available error message from a team API response body.

    Checks ``detail.msg``, then ``detail``, then ``message``, and falls back
    to ``HTTP <status>``.
    """
    if isinstance(body, dict):
        detail = body.get("detail")
        if isinstance(detail, list) and detail and isinstance(detail[0], dict):
            detail = detail[0]
        if isinstance(detail, dict) and detail.get("msg"):
            return str(detail["msg"])
        if isinstance(detail, str) and detail:
            return detail
        if body.get("message"):
            return str(body["message"])
    return f"HTTP {status_code}"


def is_retryable_team_error(error: Exception) -> bool:
    return isinstance(error, TeamAPIError) and error.status_code not in NON_RETRYABLE_STATUSES


class TeamClient(BaseClient):
    """
    Client for the region-selectable team provisioning API.

    One POST per team. Any 2xx is a success; everything else becomes a
    structured failure rather than an exception.
    """

    def __init__(
        self,
        api_token: str,
        region: str = Region.CA.value,
        endpoints: Optional[Dict[str, str]] = None,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Optional[Sleep] = None,
    ):
        """
        Initialize the team client.

        Args:
            api_token: Bearer token for the team API
            region: Initial region code
            endpoints: Per-region URL overrides
            timeout: Per-request timeout in seconds
            http_client: Pre-built HTTP client
            sleep: Awaitable sleep used between retries
        """
        self.endpoints = dict(REGION_ENDPOINTS)
        self.endpoints.update(endpoints or {})
        super().__init__("team", api_token, self.endpoints[Region.CA.value], timeout, http_client, sleep)
        self.region = Region.CA.value
        self.set_region(region)

    def set_region(self, code: str) -> None:
        """
        Select the region endpoint.

        Raises:
            ConfigurationError: For an unknown code; the current region is kept
        """
        code = str(getattr(code, "value", code)).lower()
        if code not in self.endpoints:
            raise ConfigurationError(
                f"Unknown region '{code}', expected one of: {', '.join(sorted(self.endpoints))}"
            )
        self.region = code
        self.base_url = self.endpoints[code].rstrip("/")
        logger.info(f"Team API region set to {code}: {self.base_url}")

    def _auth_headers(self) -> Dict[str, str]:
        token = self.api_key
        if not token.lower().startswith("bearer "):
            token = f"Bearer {token}"
        return {"Authorization": token}

    @staticmethod
    def build_payload(external_id: str, team_name: str, options: TeamOptions) -> Dict[str, Any]:
        return {
            "owner_id": external_id,
            "team_name": team_name,
            "admin_session_review_toggle": False,
            "allow_to_add_team_members": options.allow_member_invites,
            "charge_future_members": options.auto_charge_new_members,
            "is_pilot": False,
            "is_stripe_managed": options.is_managed_externally,
            "subscribed_plan": options.plan.value,
        }

    async def _post_team(self, external_id: str, team_name: str, options: TeamOptions) -> TeamResult:
        """Send one request; raise TeamAPIError on anything but 2xx."""
        payload = self.build_payload(external_id, team_name, options)
        logger.debug(f"Creating team '{team_name}' for {external_id} in {self.region}")

        try:
            response = await self.client.post(
                self.base_url,
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise TeamAPIError(str(e) or type(e).__name__) from e

        try:
            body = response.json()
        except ValueError:
            body = response.text or None

        if not response.is_success:
            raise TeamAPIError(
                extract_error_message(body, response.status_code),
                status_code=response.status_code,
                response_body=body,
            )

        team_ref = body.get("id") if isinstance(body, dict) else None
        logger.info(f"Team created: '{team_name}' ({team_ref or 'no id'}) for {external_id}")
        return TeamResult(
            success=True,
            team_ref=str(team_ref) if team_ref is not None else None,
            http_status=response.status_code,
            response_body=body,
        )

    async def create_team(self, external_id: str, team_name: str, options: TeamOptions) -> TeamResult:
        """Create a team with a single request."""
        try:
            return await self._post_team(external_id, team_name, options)
        except TeamAPIError as e:
            logger.error(f"Team creation failed for {external_id} ('{team_name}'): {e.message} (HTTP {e.status_code})")
            return TeamResult.from_error(e)

    async def create_team_with_retry(
        self,
        external_id: str,
        team_name: str,
        options: TeamOptions,
        max_attempts: int = 3,
        base_delay: float = 1.0,
    ) -> TeamResult:
        """
        Create a team, retrying transient failures.

        401 and 404 responses are returned immediately without a retry.
        """
        attempts = 0

        async def attempt() -> TeamResult:
            nonlocal attempts
            attempts += 1
            return await self._post_team(external_id, team_name, options)

        policy = RetryPolicy(
            max_attempts=max_attempts,
            base_delay=base_delay,
            retryable=is_retryable_team_error,
            sleep=self._sleep,
            name=f"team creation for {external_id}",
        )

        try:
            result = await policy.call(attempt)
        except MaxRetriesExceeded as e:
            return TeamResult.from_error(e.last_error, attempts)
        except TeamAPIError as e:
            logger.error(f"Team creation failed for {external_id} without retry: {e.message} (HTTP {e.status_code})")
            return TeamResult.from_error(e, attempts)

        result.attempts = attempts
        return result
