"""Test Buddy - API v1 Router."""
from fastapi import APIRouter

from testbuddy.api.v1.auth import router as auth_router
from testbuddy.api.v1.users import router as users_router
from testbuddy.api.v1.history import router as history_router
from testbuddy.api.v1.folders import router as folders_router
from testbuddy.api.v1.quiz import router as quiz_router
from testbuddy.api.v1.system import router as system_router

api_router = APIRouter()

api_router.include_router(auth_router)
api_router.include_router(users_router)
api_router.include_router(history_router)
api_router.include_router(folders_router)
api_router.include_router(quiz_router)
api_router.include_router(system_router)
