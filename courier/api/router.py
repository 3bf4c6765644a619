from fastapi import APIRouter

from courier.api.admin import router as admin_router
from courier.api.jobs import router as jobs_router
from courier.api.subscriptions import router as subscriptions_router

api_router = APIRouter()

# Admin routes at /api/admin/*
api_router.include_router(admin_router, prefix="/api/admin", tags=["admin"])
api_router.include_router(
    subscriptions_router, prefix="/api/admin/subscriptions", tags=["subscriptions"]
)

# Scheduler monitoring at /api/jobs/*
api_router.include_router(jobs_router, prefix="/api", tags=["jobs"])
