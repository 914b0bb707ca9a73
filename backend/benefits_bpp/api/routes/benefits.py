"""
Benefit routes: protocol actions (DSEP) and provider-facing reads
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header
from pydantic import BaseModel, Field

from benefits_bpp.api.deps import get_transaction_controller
from benefits_bpp.core.logging_config import LoggingConfig
from benefits_bpp.core.protocol import ProtocolAction
from benefits_bpp.services.transaction_controller import TransactionController

router = APIRouter(prefix="/benefits", tags=["benefits"])
logger = LoggingConfig.get_logger(__name__)


class SearchBenefitsRequest(BaseModel):
    """Provider listing query"""
    page: int = Field(default=1, ge=1)
    pageSize: int = Field(default=1000, ge=1)
    sort: str = "createdAt:desc"
    locale: str = "en"
    filters: Dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Protocol actions
# ============================================================================

@router.post("/dsep/search")
async def dsep_search(
    body: Dict[str, Any] = Body(..., description="Protocol envelope: {context, message}"),
    controller: TransactionController = Depends(get_transaction_controller),
):
    """Full published catalog with detail tags (on_search)"""
    return await controller.handle(ProtocolAction.SEARCH, body)


@router.post("/dsep/select")
async def dsep_select(
    body: Dict[str, Any] = Body(..., description="Protocol envelope: {context, message}"),
    controller: TransactionController = Depends(get_transaction_controller),
):
    """Single benefit referenced by message.order.items[0].id (on_select)"""
    return await controller.handle(ProtocolAction.SELECT, body)


@router.post("/dsep/init")
async def dsep_init(
    body: Dict[str, Any] = Body(..., description="Protocol envelope: {context, message}"),
    controller: TransactionController = Depends(get_transaction_controller),
):
    """Create an application from the order's applicationData (on_init)"""
    return await controller.handle(ProtocolAction.INIT, body)


@router.post("/dsep/update")
async def dsep_update(
    body: Dict[str, Any] = Body(..., description="Protocol envelope: {context, message}"),
    controller: TransactionController = Depends(get_transaction_controller),
):
    """Replace the payload of an existing application (on_update)"""
    return await controller.handle(ProtocolAction.UPDATE, body)


@router.post("/dsep/confirm")
async def dsep_confirm(
    body: Dict[str, Any] = Body(..., description="Protocol envelope: {context, message}"),
    controller: TransactionController = Depends(get_transaction_controller),
):
    """Assign an order id to an application (on_confirm)"""
    return await controller.handle(ProtocolAction.CONFIRM, body)


@router.post("/dsep/status")
async def dsep_status(
    body: Dict[str, Any] = Body(..., description="Protocol envelope: {context, message}"),
    controller: TransactionController = Depends(get_transaction_controller),
):
    """Application status for an order id (on_status)"""
    return await controller.handle(ProtocolAction.STATUS, body)


# ============================================================================
# Provider-facing reads
# ============================================================================

@router.post("/search")
async def search_benefits(
    request: Optional[SearchBenefitsRequest] = None,
    x_user_id: Optional[str] = Header(default=None),
    authorization: Optional[str] = Header(default=None),
    controller: TransactionController = Depends(get_transaction_controller),
):
    """Published benefits visible to the calling provider user, with application counts"""
    request = request or SearchBenefitsRequest()
    return await controller.list_provider_benefits(
        user_id=x_user_id,
        auth_token=authorization,
        page=request.page,
        page_size=request.pageSize,
        sort=request.sort,
        locale=request.locale,
        filters=request.filters,
    )


@router.get("/getById/{doc_id}")
async def get_benefit_by_id(
    doc_id: str,
    x_user_id: Optional[str] = Header(default=None),
    authorization: Optional[str] = Header(default=None),
    controller: TransactionController = Depends(get_transaction_controller),
):
    """One benefit, if the calling user may see it"""
    return await controller.get_benefit_for_caller(doc_id, user_id=x_user_id, auth_token=authorization)
