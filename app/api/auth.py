"""Account API: current merchant and logout."""
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.api.deps import get_current_merchant
from app.middleware.auth_middleware import get_session_token
from app.models.base import get_db
from app.models.merchant import Merchant
from app.services import auth_service

router = APIRouter(prefix="/api/v1", tags=["auth"])


def _merchant_out(m: Merchant) -> dict:
    return {
        "id": m.id,
        "email": m.email,
        "name": m.name,
        "is_active": m.is_active,
        "created_at": m.created_at.isoformat() if m.created_at else None,
    }


@router.get("/user")
async def me(merchant: Merchant = Depends(get_current_merchant)):
    """Return the current merchant."""
    return _merchant_out(merchant)


@router.post("/logout")
async def logout(request: Request, db: Session = Depends(get_db)):
    """End the current session."""
    token = get_session_token(request)
    if token:
        auth_service.delete_session(db, token)
    response = JSONResponse(content={"success": True})
    response.delete_cookie("session_token")
    return response
