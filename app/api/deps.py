"""
Request-scoped wiring for the API routers.

Every request gets its own DB session and CredentialStore; the token refresh
locks and the result cache are shared process-wide.
"""
from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from app.connectors.ga4 import GA4Connector
from app.models.base import get_db
from app.models.merchant import Merchant
from app.services.commerce_adapter import CommerceAdapter
from app.services.connection_service import ConnectionService
from app.services.credential_store import CredentialStore
from app.services.dashboard_service import DashboardService
from app.services.inventory_analysis_service import InventoryAnalysisService
from app.services.report_fetcher import ResilientReportFetcher
from app.services.token_manager import TokenLifecycleManager, refresh_locks
from app.services.traffic_adapter import TrafficAdapter
from app.utils.cache import cache_aside


def get_ga4_connector() -> GA4Connector:
    return GA4Connector()


def get_current_merchant(request: Request, db: Session = Depends(get_db)) -> Merchant:
    """Dependency: the merchant resolved by AuthMiddleware, loaded in this request's session."""
    merchant_id = getattr(request.state, "merchant_id", None)
    merchant = db.get(Merchant, merchant_id) if merchant_id is not None else None
    if not merchant:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return merchant


def get_credential_store(db: Session = Depends(get_db)) -> CredentialStore:
    return CredentialStore(db)


def _adapters(store: CredentialStore, ga4: GA4Connector):
    tokens = TokenLifecycleManager(store, ga4, locks=refresh_locks)
    fetcher = ResilientReportFetcher(tokens)
    return CommerceAdapter(fetcher), TrafficAdapter(fetcher, ga4)


def get_inventory_service(
    store: CredentialStore = Depends(get_credential_store),
    ga4: GA4Connector = Depends(get_ga4_connector),
) -> InventoryAnalysisService:
    commerce, traffic = _adapters(store, ga4)
    return InventoryAnalysisService(store, commerce, traffic, cache=cache_aside)


def get_dashboard_service(
    store: CredentialStore = Depends(get_credential_store),
    ga4: GA4Connector = Depends(get_ga4_connector),
) -> DashboardService:
    commerce, traffic = _adapters(store, ga4)
    inventory = InventoryAnalysisService(store, commerce, traffic, cache=cache_aside)
    return DashboardService(store, commerce, traffic, inventory, cache=cache_aside)


def get_connection_service(
    store: CredentialStore = Depends(get_credential_store),
    ga4: GA4Connector = Depends(get_ga4_connector),
) -> ConnectionService:
    return ConnectionService(store, ga4, cache=cache_aside)
