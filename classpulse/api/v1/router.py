from fastapi import APIRouter
from classpulse.api.v1.endpoints import activity, analytics, live, notifications, realtime_updates

# ============================================================
# Main API v1 Router
# ============================================================

api_router = APIRouter()

# Routes define their own prefixes (/notifications, /realtime-updates, ...)
api_router.include_router(notifications.router)

api_router.include_router(realtime_updates.router)

api_router.include_router(live.router)

api_router.include_router(activity.router)

api_router.include_router(analytics.router)
