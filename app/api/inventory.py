"""
Inventory insight endpoints
"""
from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.deps import get_current_merchant, get_inventory_service
from app.models.merchant import Merchant
from app.services.inventory_analysis_service import InventoryAnalysisService
from app.utils.logger import log
from app.utils.periods import DEFAULT_PERIOD, PeriodError, resolve_period

router = APIRouter(prefix="/api/v1", tags=["inventory"])


@router.get("/inventory-insights")
async def get_inventory_insights(
    period: str = Query(DEFAULT_PERIOD, description="7d, 30d, this_month or last_month"),
    merchant: Merchant = Depends(get_current_merchant),
    service: InventoryAnalysisService = Depends(get_inventory_service),
):
    """Products at risk of stocking out, and overstocked products nobody views"""
    try:
        window = resolve_period(period)
    except PeriodError as e:
        raise HTTPException(status_code=400, detail=str(e))

    insights = await service.analyze(merchant, window.start, window.end)
    log.info(f"[Merchant:{merchant.id}] Returning {len(insights)} inventory insights for {window.label}")
    return insights
