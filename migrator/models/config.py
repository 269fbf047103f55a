"""Run configuration and process settings."""

import logging
import os
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional

from dateutil import parser as date_parser

from ..exceptions import ConfigurationError, InvalidRequestError

logger = logging.getLogger(__name__)


class Region(str, Enum):
    """Team API deployment region."""
    CA = "ca"
    US = "us"
    AU = "au"
    EU = "eu"
    UK = "uk"


class ProcessingMode(str, Enum):
    """Which systems a run touches."""
    BILLING_ONLY = "billing_only"
    TEAM_ONLY = "team_only"
    BOTH = "both"

    @property
    def includes_billing(self) -> bool:
        return self is not ProcessingMode.TEAM_ONLY

    @property
    def includes_team(self) -> bool:
        return self is not ProcessingMode.BILLING_ONLY


class TeamPlan(str, Enum):
    """Plan a provisioned team is subscribed to."""
    FREE = "FREE"
    PRO = "PRO"
    PRO_PLUS = "PRO_PLUS"
    ENTERPRISE = "ENTERPRISE"


@dataclass(frozen=True)
class TeamOptions:
    """Settings applied to every team created in a run."""
    is_managed_externally: bool = True
    auto_charge_new_members: bool = True
    allow_member_invites: bool = True
    plan: TeamPlan = TeamPlan.PRO

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "is_managed_externally": self.is_managed_externally,
            "auto_charge_new_members": self.auto_charge_new_members,
            "allow_member_invites": self.allow_member_invites,
            "plan": self.plan.value,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TeamOptions":
        """Create from a snake_case or camelCase dictionary."""
        data = data or {}
        if not isinstance(data, dict):
            raise InvalidRequestError("team_options must be an object")
        plan = _pick(data, "plan", default=TeamPlan.PRO.value)
        try:
            plan = TeamPlan(str(plan).upper())
        except ValueError:
            raise InvalidRequestError(f"Unknown team plan: {plan}")
        return cls(
            is_managed_externally=bool(_pick(data, "is_managed_externally", "isManagedExternally", default=True)),
            auto_charge_new_members=bool(_pick(data, "auto_charge_new_members", "autoChargeNewMembers", default=True)),
            allow_member_invites=bool(_pick(data, "allow_member_invites", "allowMemberInvites", default=True)),
            plan=plan,
        )


@dataclass(frozen=True)
class ProcessingConfig:
    """
    Configuration for one run.

    Built once before processing starts and passed explicitly to the
    orchestrator, processor and clients. Never mutated during a run.
    """
    mode: ProcessingMode = ProcessingMode.BOTH
    price_ref: Optional[str] = None
    coupon_ref: Optional[str] = None
    start_date: Optional[date] = None
    currency: str = "cad"
    region: Region = Region.CA
    team_options: TeamOptions = field(default_factory=TeamOptions)

    def __post_init__(self):
        if self.mode.includes_billing:
            missing = [
                name for name in ("price_ref", "coupon_ref", "start_date")
                if not getattr(self, name)
            ]
            if missing:
                raise InvalidRequestError(
                    f"Missing billing configuration: {', '.join(missing)}"
                )

    @property
    def start_date_iso(self) -> Optional[str]:
        return self.start_date.isoformat() if self.start_date else None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "mode": self.mode.value,
            "price_ref": self.price_ref,
            "coupon_ref": self.coupon_ref,
            "start_date": self.start_date_iso,
            "currency": self.currency,
            "region": self.region.value,
            "team_options": self.team_options.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ProcessingConfig":
        """Create from a snake_case or camelCase dictionary."""
        data = data or {}
        if not isinstance(data, dict):
            raise InvalidRequestError("config must be an object")

        mode = _pick(data, "mode", "processing_mode", "processingMode", default=ProcessingMode.BOTH.value)
        try:
            mode = ProcessingMode(mode)
        except ValueError:
            raise InvalidRequestError(f"Unknown processing mode: {mode}")

        region = _pick(data, "region", default=Region.CA.value)
        try:
            region = Region(str(region).lower())
        except ValueError:
            raise InvalidRequestError(f"Unknown region: {region}")

        start_date = _pick(data, "start_date", "startDate")
        if start_date and not isinstance(start_date, date):
            try:
                start_date = date_parser.isoparse(str(start_date)).date()
            except ValueError:
                raise InvalidRequestError(f"Invalid start date: {start_date}")
        elif isinstance(start_date, datetime):
            start_date = start_date.date()

        currency = _pick(data, "currency", default="cad")

        return cls(
            mode=mode,
            price_ref=_pick(data, "price_ref", "priceRef", "price_id", "priceId"),
            coupon_ref=_pick(data, "coupon_ref", "couponRef", "coupon_id", "couponId"),
            start_date=start_date or None,
            currency=str(currency).lower(),
            region=region,
            team_options=TeamOptions.from_dict(
                _pick(data, "team_options", "teamOptions", "team_config", "teamConfig")
            ),
        )


@dataclass(frozen=True)
class BatchTimings:
    """Batch sizes and delays used by the orchestrator."""
    billing_batch_size: int = 8
    team_batch_size: int = 3
    billing_batch_delay: float = 1.0
    team_batch_delay: float = 2.0
    propagation_delay: float = 10.0
    settle_delay: float = 0.3

    def batch_size_for(self, mode: ProcessingMode) -> int:
        """Team-only runs use the smaller team batch."""
        if mode is ProcessingMode.TEAM_ONLY:
            return self.team_batch_size
        return self.billing_batch_size

    @classmethod
    def from_env(cls) -> "BatchTimings":
        """Read overrides from the environment."""
        defaults = cls()
        return cls(
            billing_batch_size=max(1, _env_number("BILLING_BATCH_SIZE", defaults.billing_batch_size, int)),
            team_batch_size=max(1, _env_number("TEAM_BATCH_SIZE", defaults.team_batch_size, int)),
            billing_batch_delay=_env_number("BILLING_BATCH_DELAY", defaults.billing_batch_delay, float),
            team_batch_delay=_env_number("TEAM_BATCH_DELAY", defaults.team_batch_delay, float),
            propagation_delay=_env_number("PROPAGATION_DELAY", defaults.propagation_delay, float),
            settle_delay=_env_number("SETTLE_DELAY", defaults.settle_delay, float),
        )


@dataclass
class Settings:
    """Process-level settings: credentials, endpoints and timings."""
    billing_api_key: Optional[str] = None
    team_api_token: Optional[str] = None
    team_endpoints: Dict[str, str] = field(default_factory=dict)
    team_max_attempts: int = 2
    timings: BatchTimings = field(default_factory=BatchTimings)

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        endpoints = {}
        for region in Region:
            url = os.environ.get(f"TEAM_API_URL_{region.value.upper()}")
            if url:
                endpoints[region.value] = url

        return cls(
            billing_api_key=os.environ.get("STRIPE_SECRET_KEY"),
            team_api_token=os.environ.get("TEAM_API_TOKEN"),
            team_endpoints=endpoints,
            team_max_attempts=max(1, _env_number("TEAM_MAX_ATTEMPTS", 2, int)),
            timings=BatchTimings.from_env(),
        )

    def require_billing_key(self) -> str:
        if not self.billing_api_key:
            raise ConfigurationError("STRIPE_SECRET_KEY is not set")
        return self.billing_api_key

    def require_team_token(self) -> str:
        if not self.team_api_token:
            raise ConfigurationError("TEAM_API_TOKEN is not set")
        return self.team_api_token


def _pick(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    """Return the first non-None value among keys."""
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return default


def _env_number(name: str, default, cast):
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        logger.warning(f"Invalid {name}={raw!r}, defaulting to {default}")
        return default
