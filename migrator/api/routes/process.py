"""Run trigger endpoint."""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ..dependencies import get_runner, get_settings
from ..models import ErrorResponse, OutcomeResponse, ProcessResponse, SummaryResponse
from ...exceptions import ConfigurationError, InvalidRequestError
from ...models.config import ProcessingConfig, Settings
from ...services.report import summarize

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "",
    response_model=ProcessResponse,
    response_model_by_alias=True,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def process_records(
    request: Request,
    settings: Settings = Depends(get_settings),
    runner=Depends(get_runner),
):
    """
    Process a batch of records.

    The body is ``{"records": [...], "config": {...}}``. Returns one result
    per record in input order plus summary counts. A malformed body is
    rejected with 400 before anything is processed.
    """
    try:
        body = await request.json()
    except ValueError:
        raise InvalidRequestError("Request body must be valid JSON")

    if not isinstance(body, dict):
        raise InvalidRequestError("Request body must be an object")
    if "records" not in body:
        raise InvalidRequestError("records is required")

    config = ProcessingConfig.from_dict(body.get("config"))
    logger.info(f"Received {config.mode.value} run request for region {config.region.value}")

    try:
        run = await runner(body["records"], config, settings)
    except (InvalidRequestError, ConfigurationError):
        raise
    except Exception as e:
        logger.exception(f"Run failed: {e}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    return ProcessResponse(
        results=[OutcomeResponse(**outcome.to_dict()) for outcome in run.outcomes],
        summary=SummaryResponse(**summarize(run.outcomes)),
    )

