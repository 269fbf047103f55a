"""Report export endpoint."""

from fastapi import APIRouter
from fastapi.responses import Response

from ..models import ReportRequest
from ...exceptions import InvalidRequestError
from ...models.record import OutcomeRecord
from ...services.report import render_report, report_filename

router = APIRouter()


@router.post("")
async def export_report(request: ReportRequest):
    """Render run results as a CSV attachment."""
    outcomes = []
    for idx, item in enumerate(request.results):
        try:
            outcomes.append(OutcomeRecord.from_dict(item))
        except (TypeError, ValueError) as e:
            raise InvalidRequestError(f"Result {idx + 1} is invalid: {e}")

    return Response(
        content=render_report(outcomes),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{report_filename()}"'},
    )
