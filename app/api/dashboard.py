"""
Dashboard endpoint
"""
from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.deps import get_current_merchant, get_dashboard_service
from app.models.merchant import Merchant
from app.services.dashboard_service import DashboardService
from app.utils.periods import DEFAULT_PERIOD, PeriodError

router = APIRouter(prefix="/api/v1", tags=["dashboard"])


@router.get("/dashboard")
async def get_dashboard(
    period: str = Query(DEFAULT_PERIOD, description="7d, 30d, this_month or last_month"),
    merchant: Merchant = Depends(get_current_merchant),
    service: DashboardService = Depends(get_dashboard_service),
):
    """
    Sales, traffic, conversion rate and inventory insights for the period.

    Sections for a provider that is not connected (or failed) are empty.
    """
    try:
        return await service.get_dashboard(merchant, period)
    except PeriodError as e:
        raise HTTPException(status_code=400, detail=str(e))
