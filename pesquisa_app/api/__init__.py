from fastapi import APIRouter

from .endpoints import assignments, auth, dashboard, surveys, users

api_router = APIRouter(prefix="/api")
api_router.include_router(auth.router, prefix="/auth", tags=["auth"])
api_router.include_router(users.router, prefix="/users", tags=["users"])
api_router.include_router(surveys.router, prefix="/surveys", tags=["surveys"])
api_router.include_router(assignments.router, prefix="/assignments", tags=["assignments"])
api_router.include_router(dashboard.router, prefix="/researchers", tags=["dashboard"])

ws_router = dashboard.ws_router
