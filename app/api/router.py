"""API router configuration.

This module configures the main API router and includes all endpoint routers.
"""

from fastapi import APIRouter

from app.api.endpoints import chat, conversations, health

api_router = APIRouter()

api_router.include_router(health.router, tags=["health"])
api_router.include_router(conversations.router, prefix="/conversations", tags=["conversations"])
api_router.include_router(chat.router, tags=["chat"])
