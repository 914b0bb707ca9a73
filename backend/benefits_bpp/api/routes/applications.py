"""
Application routes: listing, CSV export, lookup, review decisions and eligibility recheck
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field

from benefits_bpp.api.deps import get_application_store, get_scheduler
from benefits_bpp.core.logging_config import LoggingConfig
from benefits_bpp.models.application import ApplicationStatus
from benefits_bpp.services.application_report import render_csv
from benefits_bpp.services.application_store import ApplicationStore
from benefits_bpp.services.eligibility_scheduler import EligibilityScheduler

router = APIRouter(prefix="/applications", tags=["applications"])
logger = LoggingConfig.get_logger(__name__)


class UpdateStatusRequest(BaseModel):
    """Review decision"""
    status: ApplicationStatus = Field(..., description="New application status")
    remark: Optional[str] = Field(default=None, description="Comment shown to the applicant")


@router.get("")
async def list_applications(
    benefit_id: str = Query(..., description="Benefit document id"),
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    order_by: str = Query(default="id"),
    order_direction: str = Query(default="asc", pattern="^(asc|desc)$"),
    store: ApplicationStore = Depends(get_application_store),
) -> List[Dict[str, Any]]:
    """Applications submitted for one benefit"""
    applications = store.list_applications(
        benefit_id,
        limit=limit,
        offset=offset,
        order_by=order_by,
        order_direction=order_direction,
    )
    return [application.to_dict() for application in applications]


@router.get("/export")
async def export_applications(
    benefit_id: str = Query(..., description="Benefit document id"),
    type: str = Query(default="summary", description="Report type: summary or applicant_details"),
    status: Optional[List[str]] = Query(default=None, description="Statuses to include; repeat or comma separate"),
    store: ApplicationStore = Depends(get_application_store),
) -> Response:
    """Applications of one benefit as a CSV download"""
    statuses = [s.strip() for value in status or [] for s in value.split(",") if s.strip()]
    applications = store.export_applications(benefit_id, statuses)
    content = render_csv(applications, type)
    logger.info(
        f"Exported {len(applications)} application(s) of benefit {benefit_id}",
        extra={"report_type": type, "statuses": ",".join(statuses)},
    )
    filename = f"applications_{benefit_id}_{type}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/eligibility/recheck")
async def recheck_eligibility(scheduler: EligibilityScheduler = Depends(get_scheduler)):
    """Run one eligibility sweep now"""
    report = await scheduler.run_once()
    return report.to_dict()


@router.get("/{application_id}")
async def get_application(
    application_id: int,
    store: ApplicationStore = Depends(get_application_store),
):
    """Application with its stored files"""
    application = store.get_application(application_id)
    return {
        **application.to_dict(),
        "applicationFiles": [f.to_dict() for f in application.files],
    }


@router.patch("/{application_id}/status")
async def update_application_status(
    application_id: int,
    request: UpdateStatusRequest,
    store: ApplicationStore = Depends(get_application_store),
):
    """Record a review decision"""
    return store.update_status(application_id, request.status.value, request.remark)
