"""Pydantic models for API requests and responses."""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# Request Models
class ReportRequest(BaseModel):
    results: List[Dict[str, Any]] = Field(default_factory=list)


# Response Models
class OutcomeResponse(BaseModel):
    """One record outcome, rendered with camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    external_id: str
    email: str
    team_name: str
    status: str
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
    warnings: List[str] = Field(default_factory=list)


class SummaryResponse(BaseModel):
    total: int
    success: int
    partial: int
    failed: int


class ProcessResponse(BaseModel):
    """Response for a processing run: one result per input record, in order."""
    results: List[OutcomeResponse]
    summary: SummaryResponse


class ConfigOptionsResponse(BaseModel):
    prices: List[Dict[str, Any]]
    coupons: List[Dict[str, Any]]
    currencies: List[str]


class ErrorResponse(BaseModel):
    error: str
