"""Mount all API routes."""

from fastapi import APIRouter

from swaami.api.activity import router as activity_router
from swaami.api.credits import router as credits_router
from swaami.api.events import router as events_router
from swaami.api.matches import router as matches_router
from swaami.api.profiles import router as profiles_router
from swaami.api.tasks import router as tasks_router
from swaami.api.trust import router as trust_router

api_router = APIRouter()
api_router.include_router(profiles_router, tags=["profiles"])
api_router.include_router(trust_router, tags=["trust"])
api_router.include_router(tasks_router, tags=["tasks"])
api_router.include_router(matches_router, tags=["matches"])
api_router.include_router(credits_router, tags=["credits"])
api_router.include_router(events_router, tags=["events"])
api_router.include_router(activity_router, tags=["activity"])
