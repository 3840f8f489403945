from typing import Any, Dict

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.db.async_session import AsyncDatabaseManager, get_async_db_manager
from app.db.types import utcnow

router = APIRouter()


@router.get("/health", response_model=Dict[str, Any])
async def health_check(manager: AsyncDatabaseManager = Depends(get_async_db_manager)):
    """
    Basic health check endpoint.

    Returns 503 when the database cannot be reached.
    """
    connected = await manager.test_connection()
    body = {
        "status": "healthy" if connected else "unhealthy",
        "timestamp": utcnow().isoformat(),
        "database": "connected" if connected else "disconnected",
    }
    if not connected:
        return JSONResponse(status_code=503, content=body)
    return body


@router.get("/health/database/pool", response_model=Dict[str, Any])
async def connection_pool_status(manager: AsyncDatabaseManager = Depends(get_async_db_manager)):
    """Connection pool information and lease metrics."""
    return manager.get_connection_info()
