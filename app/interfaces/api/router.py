from fastapi import APIRouter

from app.interfaces.api.auth import router as auth_router
from app.interfaces.api.channels import router as channels_router
from app.interfaces.api.health import router as health_router
from app.interfaces.api.messages import router as messages_router

api_router = APIRouter()
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router)
api_router.include_router(messages_router)
api_router.include_router(channels_router)
