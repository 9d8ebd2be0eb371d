"""Authentication middleware: protects all routes except public paths."""
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from app.models.base import SessionLocal
from app.services import auth_service

# Paths that never require authentication
PUBLIC_PREFIXES = (
    "/health",
    "/docs",
    "/openapi.json",
    "/redoc",
)


def get_session_token(request: Request) -> str | None:
    """Bearer token from the Authorization header, else the session cookie."""
    header = request.headers.get("authorization", "")
    scheme, _, credentials = header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return request.cookies.get("session_token")


class AuthMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if any(path.startswith(p) for p in PUBLIC_PREFIXES):
            return await call_next(request)

        token = get_session_token(request)
        merchant = None
        if token:
            db = SessionLocal()
            try:
                merchant = auth_service.validate_session(db, token)
            finally:
                db.close()

        if merchant:
            # Attach merchant to request state for downstream use
            request.state.merchant_id = merchant.id
            return await call_next(request)

        return JSONResponse(
            status_code=401,
            content={"detail": "Not authenticated"},
        )
