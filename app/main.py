from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

from app.core.config import settings
from app.api.router import api_router
from app.db.async_session import startup_async_database, shutdown_async_database
from app.services.async_error_handler import register_exception_handlers
from app.services.async_retention import start_retention_janitor, stop_retention_janitor

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title=settings.PROJECT_NAME,
    description=settings.PROJECT_DESCRIPTION,
    version=settings.VERSION,
    openapi_url=f"{settings.API_PREFIX}/openapi.json",
    docs_url=f"{settings.API_PREFIX}/docs",
    redoc_url=f"{settings.API_PREFIX}/redoc",
    redirect_slashes=False,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(api_router, prefix=settings.API_PREFIX)


@app.on_event("startup")
async def startup_event():
    """Initialize the database pool, then start the retention janitor."""
    try:
        logger.info(f"Starting up {settings.PROJECT_NAME}...")

        await startup_async_database()
        logger.info("Async database initialized successfully")

        await start_retention_janitor()
        logger.info("Retention janitor started")

        logger.info(f"{settings.PROJECT_NAME} startup completed successfully")

    except Exception as e:
        logger.error(f"Failed to start up application: {e}")
        raise


@app.on_event("shutdown")
async def shutdown_event():
    """Stop background work before releasing the pool."""
    try:
        logger.info(f"Shutting down {settings.PROJECT_NAME}...")

        await stop_retention_janitor()
        await shutdown_async_database()
        logger.info("Async database connections closed")

    except Exception as e:
        logger.error(f"Error during application shutdown: {e}")


@app.get("/")
async def root():
    return {"status": "ok", "message": f"Welcome to {settings.PROJECT_NAME}"}
