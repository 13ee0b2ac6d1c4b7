"""Health check endpoint."""

from fastapi import APIRouter, Depends

from app.config import settings
from app.database.availability import get_availability

router = APIRouter()


@router.get("/health")
def health_check(availability=Depends(get_availability)):
    database_up = availability.is_available()
    return {
        "status": "ok" if database_up else "degraded",
        "database": "available" if database_up else "unavailable",
        "version": settings.APP_VERSION,
    }
