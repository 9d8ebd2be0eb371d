"""
Provider connection endpoints: Shopify token, Google OAuth, GA4 property.
"""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from app.api.deps import get_connection_service, get_current_merchant
from app.connectors.errors import ProviderError
from app.models.connections import TrafficConnection
from app.models.merchant import Merchant
from app.services.connection_service import ConnectionService, OAuthStateError
from app.utils.logger import log

router = APIRouter(prefix="/api/v1/connect", tags=["connections"])


# ── Schemas ──────────────────────────────────────────────

class ShopifyTokenRequest(BaseModel):
    shop_domain: str = Field(..., min_length=1, max_length=255)
    access_token: str = Field(..., min_length=1)


class GoogleCallbackRequest(BaseModel):
    code: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)


class PropertyRequest(BaseModel):
    property_id: str = Field(..., pattern=r"^properties/\d+$")


def _traffic_out(connection: TrafficConnection) -> dict:
    # Never echo tokens
    return {
        "property_id": connection.property_id,
        "expires_at": connection.expires_at.isoformat() if connection.expires_at else None,
        "has_refresh_token": connection.refresh_token_enc is not None,
        "needs_reauth": bool(connection.needs_reauth),
    }


# ── Shopify ──────────────────────────────────────────────

@router.post("/shopify/token")
async def save_shopify_token(
    body: ShopifyTokenRequest,
    merchant: Merchant = Depends(get_current_merchant),
    service: ConnectionService = Depends(get_connection_service),
):
    """Store (or replace) the merchant's Shopify admin API token"""
    connection = service.save_shopify_token(merchant.id, body.shop_domain, body.access_token)
    return {
        "message": "Shopify connection saved.",
        "shop": {"shop_domain": connection.shop_domain},
    }


# ── Google ───────────────────────────────────────────────

@router.get("/google")
async def google_authorization_url(
    merchant: Merchant = Depends(get_current_merchant),
    service: ConnectionService = Depends(get_connection_service),
):
    """URL the frontend sends the merchant to for Google consent"""
    return {"authorization_url": service.google_authorization_url(merchant.id)}


@router.post("/google/callback")
async def google_callback(
    body: GoogleCallbackRequest,
    merchant: Merchant = Depends(get_current_merchant),
    service: ConnectionService = Depends(get_connection_service),
):
    """Exchange the authorization code the frontend received from Google"""
    try:
        connection = await service.handle_google_callback(merchant.id, body.code, body.state)
    except OAuthStateError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ProviderError as e:
        log.error(f"[Merchant:{merchant.id}] Google code exchange failed ({e.kind.value}): {e}")
        raise HTTPException(status_code=400, detail="Could not verify the authorization with Google.")

    return {
        "message": "Google Analytics connected.",
        "connection": _traffic_out(connection),
    }


@router.put("/google/property")
async def save_property(
    body: PropertyRequest,
    merchant: Merchant = Depends(get_current_merchant),
    service: ConnectionService = Depends(get_connection_service),
):
    """Select the GA4 property to report on"""
    connection = service.save_property_id(merchant.id, body.property_id)
    if connection is None:
        raise HTTPException(status_code=404, detail="Connect Google Analytics first.")
    return {
        "message": "Google Analytics property saved.",
        "connection": _traffic_out(connection),
    }
