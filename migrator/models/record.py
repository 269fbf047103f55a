"""Record models for migration input and per-record outcomes."""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional
from enum import Enum


class RecordStatus(str, Enum):
    """Terminal status of a record after a run."""
    SUCCESS = "success"
    CUSTOMER_NOT_FOUND = "customer_not_found"
    CANCEL_FAILED = "cancel_failed"
    SUBSCRIPTION_FAILED = "subscription_failed"
    TEAM_CREATION_FAILED = "team_creation_failed"

    @property
    def is_partial(self) -> bool:
        """Billing went through but the team step did not."""
        return self is RecordStatus.TEAM_CREATION_FAILED

    @property
    def is_failure(self) -> bool:
        """Failed before or during billing."""
        return self not in (RecordStatus.SUCCESS, RecordStatus.TEAM_CREATION_FAILED)


@dataclass(frozen=True)
class StatusPresentation:
    """How a status is shown in reports and summaries."""
    label: str
    icon: str
    severity: str  # ok, warning, error


STATUS_PRESENTATION: Dict[RecordStatus, StatusPresentation] = {
    RecordStatus.SUCCESS: StatusPresentation("Success", "✓", "ok"),
    RecordStatus.CUSTOMER_NOT_FOUND: StatusPresentation("Customer Not Found", "✗", "error"),
    RecordStatus.CANCEL_FAILED: StatusPresentation("Cancel Failed", "✗", "error"),
    RecordStatus.SUBSCRIPTION_FAILED: StatusPresentation("Subscription Failed", "✗", "error"),
    RecordStatus.TEAM_CREATION_FAILED: StatusPresentation("Team Creation Failed", "!", "warning"),
}


@dataclass(frozen=True)
class InputRecord:
    """A customer to migrate, as supplied by the caller."""
    external_id: str
    email: str
    team_name: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "external_id": self.external_id,
            "email": self.email,
            "team_name": self.team_name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InputRecord":
        """Create from a snake_case or camelCase dictionary."""
        return cls(
            external_id=str(_pick(data, "external_id", "externalId") or "").strip(),
            email=str(_pick(data, "email") or "").strip(),
            team_name=str(_pick(data, "team_name", "teamName") or "").strip(),
        )


@dataclass
class OutcomeRecord:
    """Result of migrating one InputRecord."""
    external_id: str
    email: str
    team_name: str
    status: RecordStatus
    customer_ref: Optional[str] = None
    subscription_ref: Optional[str] = None
    team_ref: Optional[str] = None
    old_currency: Optional[str] = None
    new_currency: Optional[str] = None
    start_date: Optional[str] = None
    coupon_ref: Optional[str] = None
    error_message: Optional[str] = None
    team_error_message: Optional[str] = None
    team_http_status: Optional[int] = None
    team_response_body: Optional[Any] = None
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def for_record(cls, record: InputRecord, status: RecordStatus, **kwargs) -> "OutcomeRecord":
        """Start an outcome carrying the input record's fields."""
        return cls(
            external_id=record.external_id,
            email=record.email,
            team_name=record.team_name,
            status=status,
            **kwargs,
        )

    @property
    def input_record(self) -> InputRecord:
        return InputRecord(self.external_id, self.email, self.team_name)

    @property
    def billing_succeeded(self) -> bool:
        return bool(self.customer_ref and self.subscription_ref)

    def with_team_success(self, team_ref: Optional[str]) -> "OutcomeRecord":
        """Copy of this outcome upgraded by a successful team step."""
        return replace(
            self,
            status=RecordStatus.SUCCESS,
            team_ref=team_ref,
            warnings=list(self.warnings),
        )

    def with_team_failure(
        self,
        message: str,
        http_status: Optional[int] = None,
        response_body: Any = None,
    ) -> "OutcomeRecord":
        """Copy of this outcome marked as a failed team step."""
        return replace(
            self,
            status=RecordStatus.TEAM_CREATION_FAILED,
            team_ref=None,
            error_message=message,
            team_error_message=message,
            team_http_status=http_status,
            team_response_body=response_body,
            warnings=list(self.warnings),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "external_id": self.external_id,
            "email": self.email,
            "team_name": self.team_name,
            "status": self.status.value,
            "customer_ref": self.customer_ref,
            "subscription_ref": self.subscription_ref,
            "team_ref": self.team_ref,
            "old_currency": self.old_currency,
            "new_currency": self.new_currency,
            "start_date": self.start_date,
            "coupon_ref": self.coupon_ref,
            "error_message": self.error_message,
            "team_error_message": self.team_error_message,
            "team_http_status": self.team_http_status,
            "team_response_body": self.team_response_body,
            "warnings": self.warnings,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OutcomeRecord":
        """Create from a snake_case or camelCase dictionary."""
        http_status = _pick(data, "team_http_status", "teamHttpStatus")
        return cls(
            external_id=str(_pick(data, "external_id", "externalId") or ""),
            email=str(_pick(data, "email") or ""),
            team_name=str(_pick(data, "team_name", "teamName") or ""),
            status=RecordStatus(_pick(data, "status")),
            customer_ref=_pick(data, "customer_ref", "customerRef"),
            subscription_ref=_pick(data, "subscription_ref", "subscriptionRef"),
            team_ref=_pick(data, "team_ref", "teamRef"),
            old_currency=_pick(data, "old_currency", "oldCurrency"),
            new_currency=_pick(data, "new_currency", "newCurrency"),
            start_date=_pick(data, "start_date", "startDate"),
            coupon_ref=_pick(data, "coupon_ref", "couponRef"),
            error_message=_pick(data, "error_message", "errorMessage"),
            team_error_message=_pick(data, "team_error_message", "teamErrorMessage"),
            team_http_status=int(http_status) if http_status is not None else None,
            team_response_body=_pick(data, "team_response_body", "teamResponseBody"),
            warnings=list(_pick(data, "warnings") or []),
        )


def _pick(data: Dict[str, Any], *keys: str) -> Any:
    """Return the first key present in data."""
    for key in keys:
        if key in data:
            return data[key]
    return None


def count_outcomes(outcomes: List[OutcomeRecord]) -> Dict[str, int]:
    """Count outcomes as success / partial / failed."""
    return {
        "total": len(outcomes),
        "success": sum(1 for o in outcomes if o.status is RecordStatus.SUCCESS),
        "partial": sum(1 for o in outcomes if o.status.is_partial),
        "failed": sum(1 for o in outcomes if o.status.is_failure),
    }
