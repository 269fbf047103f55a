"""Run configuration options endpoint."""

from fastapi import APIRouter, Depends

from ..dependencies import get_billing_client
from ..models import ConfigOptionsResponse, ErrorResponse
from ...clients.billing import BillingClient

router = APIRouter()


@router.get("", response_model=ConfigOptionsResponse, responses={500: {"model": ErrorResponse}})
async def get_config_options(billing: BillingClient = Depends(get_billing_client)):
    """Prices, coupons and currencies a run can be configured with."""
    options = await billing.get_config_options()
    return options.to_dict()
