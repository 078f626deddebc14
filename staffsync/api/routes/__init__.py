"""API Routes module"""
from fastapi import APIRouter

from .staff import router as staff_router
from .notifications import router as notifications_router
from .jobs import router as jobs_router
from .audits import router as audits_router

# Main API router
api_router = APIRouter()

# Include all route modules
api_router.include_router(staff_router, prefix="/staff", tags=["Staff"])
api_router.include_router(notifications_router, prefix="/staff", tags=["Notifications"])
api_router.include_router(jobs_router, prefix="/jobs", tags=["Jobs"])
api_router.include_router(audits_router, prefix="/audits", tags=["Audits"])

__all__ = ["api_router"]
