"""
Health check endpoint
"""
from fastapi import APIRouter
from datetime import datetime
from app.config import get_settings
from app import __version__

settings = get_settings()

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "environment": settings.environment,
        "timestamp": datetime.utcnow().isoformat(),
        "version": __version__
    }
