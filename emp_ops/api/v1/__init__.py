"""API v1 routes."""

from fastapi import APIRouter

from emp_ops.api.v1.endpoints import (
    blacklist,
    compliance,
    notifications,
    reconciliation,
    settings,
    submissions,
    uploads,
)

api_router = APIRouter()

api_router.include_router(submissions.router, prefix="/emp", tags=["Batch Submission"])
api_router.include_router(reconciliation.router, prefix="/emp", tags=["Reconciliation"])
api_router.include_router(uploads.router, prefix="/emp/uploads", tags=["Uploads"])
api_router.include_router(compliance.router, prefix="/emp/compliance", tags=["Compliance"])
api_router.include_router(settings.router, prefix="/emp/settings", tags=["Settings"])
api_router.include_router(notifications.router, prefix="/emp/notifications", tags=["Notifications"])
api_router.include_router(blacklist.router, prefix="/blacklist", tags=["Blacklist"])
