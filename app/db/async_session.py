from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, create_async_engine, async_sessionmaker
from sqlalchemy.exc import SQLAlchemyError, TimeoutError as SQLTimeoutError
from sqlalchemy.pool import AsyncAdaptedQueuePool, StaticPool
from sqlalchemy import text, event
from typing import AsyncGenerator, Optional, Dict, Any
import logging
import time
from datetime import datetime, timezone
from contextlib import asynccontextmanager

from fastapi import Depends

from app.core.config import settings
from app.db.base_class import Base
from app.services.async_error_handler import AsyncErrorHandler

logger = logging.getLogger(__name__)


# Connection pool metrics
class ConnectionPoolMetrics:
    """Tracks connection pool metrics for monitoring."""

    def __init__(self):
        self.leases = 0
        self.failed_leases = 0
        self.connection_timeouts = 0
        self.peak_connections = 0
        self.total_lease_time = 0.0
        self.last_reset = datetime.now(timezone.utc)

    def record_lease(self, success: bool, duration: float):
        """Record a finished lease with its outcome and duration."""
        self.leases += 1
        self.total_lease_time += duration
        if not success:
            self.failed_leases += 1

    def record_timeout(self):
        """Record a connection acquisition timeout."""
        self.connection_timeouts += 1

    def update_peak_connections(self, current_connections: int):
        if current_connections > self.peak_connections:
            self.peak_connections = current_connections

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "leases": self.leases,
            "failed_leases": self.failed_leases,
            "connection_timeouts": self.connection_timeouts,
            "average_lease_time_ms": (
                round(self.total_lease_time / self.leases * 1000, 2) if self.leases else 0.0
            ),
            "peak_connections": self.peak_connections,
            "last_reset": self.last_reset.isoformat()
        }

    def reset(self):
        """Reset all metrics."""
        self.__init__()


class AsyncDatabaseManager:
    """
    Manages the async engine, its bounded connection pool and session leases.

    Every logical operation takes one lease through ``lease()`` (or the FastAPI
    dependency ``get_async_db``). The session is rolled back on failure and
    closed on every exit path, which returns its connection to the pool.
    """

    def __init__(self, database_url: Optional[str] = None, **engine_overrides: Any):
        self.database_url = (database_url or settings.async_database_url).replace("\\x3a", ":")
        self.engine_overrides = engine_overrides
        self.metrics = ConnectionPoolMetrics()
        self.async_engine: Optional[AsyncEngine] = None
        self.async_session_factory: Optional[async_sessionmaker] = None
        self._is_initialized = False
        self._initialize_engine()

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    def _engine_options(self) -> Dict[str, Any]:
        """Pool and driver options for the configured backend."""
        options: Dict[str, Any] = {
            "echo": settings.DB_ECHO,
            "pool_pre_ping": settings.DB_POOL_PRE_PING,
        }

        if self.is_sqlite:
            if ":memory:" in self.database_url:
                options["poolclass"] = StaticPool
                options["connect_args"] = {"check_same_thread": False}
            else:
                options.update(
                    poolclass=AsyncAdaptedQueuePool,
                    pool_size=settings.DB_POOL_SIZE,
                    max_overflow=settings.DB_MAX_OVERFLOW,
                    pool_timeout=settings.DB_POOL_TIMEOUT,
                    connect_args={"timeout": settings.DB_COMMAND_TIMEOUT},
                )
        else:
            options.update(
                pool_size=settings.DB_POOL_SIZE,
                max_overflow=settings.DB_MAX_OVERFLOW,
                pool_timeout=settings.DB_POOL_TIMEOUT,
                pool_recycle=settings.DB_POOL_RECYCLE,
                connect_args={
                    "server_settings": {
                        "application_name": "chat_history_backend",
                        "statement_timeout": str(settings.DB_STATEMENT_TIMEOUT_MS),
                        "idle_in_transaction_session_timeout": "600000",  # 10 minutes
                    },
                    "command_timeout": settings.DB_COMMAND_TIMEOUT,
                },
            )

        options.update(self.engine_overrides)
        return options

    def _initialize_engine(self):
        """Create the async engine and session factory."""
        try:
            options = self._engine_options()
            logger.info(f"Initializing async database engine with URL: {self.database_url[:50]}...")
            logger.info(
                f"Pool configuration - Size: {options.get('pool_size', 'n/a')}, "
                f"Max Overflow: {options.get('max_overflow', 'n/a')}, "
                f"Timeout: {options.get('pool_timeout', 'n/a')}s"
            )

            self.async_engine = create_async_engine(self.database_url, **options)
            self._setup_pool_events()

            self.async_session_factory = async_sessionmaker(
                bind=self.async_engine,
                class_=AsyncSession,
                expire_on_commit=False,  # Keep objects accessible after commit
                autoflush=False,
            )

            self._is_initialized = True
            logger.info("Async database engine initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize async database engine: {e}")
            raise

    def _setup_pool_events(self):
        """Set up pool events for SQLite pragmas and connection metrics."""
        if not self.async_engine:
            return

        sync_engine = self.async_engine.sync_engine

        @event.listens_for(sync_engine, "connect")
        def on_connect(dbapi_connection, connection_record):
            """Enable foreign keys on SQLite so ON DELETE CASCADE is honoured."""
            if self.is_sqlite:
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()
            logger.debug("New database connection established")

        @event.listens_for(sync_engine, "checkout")
        def on_checkout(dbapi_connection, connection_record, connection_proxy):
            pool = sync_engine.pool
            checkedout = getattr(pool, "checkedout", None)
            if checkedout is not None:
                self.metrics.update_peak_connections(checkedout())

    @asynccontextmanager
    async def lease(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Scoped session lease.

        Storage errors are classified into the service taxonomy; a pool
        acquisition timeout surfaces as ``UnavailableError``.
        """
        if not self._is_initialized:
            raise RuntimeError("AsyncDatabaseManager is not initialized")

        start_time = time.monotonic()
        success = False
        session = self.async_session_factory()
        try:
            yield session
            success = True
        except SQLAlchemyError as e:
            await session.rollback()
            domain_error = AsyncErrorHandler.handle_error(e, "session lease")
            if isinstance(e, SQLTimeoutError):
                self.metrics.record_timeout()
            raise domain_error from e
        except BaseException:
            await session.rollback()
            raise
        finally:
            await session.close()
            self.metrics.record_lease(success, time.monotonic() - start_time)

    async def get_async_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Session generator for FastAPI dependency injection.

        Yields:
            AsyncSession: Database session for async operations
        """
        async with self.lease() as session:
            yield session

    async def create_all(self):
        """Create all tables known to the declarative base."""
        import app.models  # noqa: F401

        async with self.async_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self):
        import app.models  # noqa: F401

        async with self.async_engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def test_connection(self) -> bool:
        """
        Test the database connection.

        Returns:
            bool: True if connection is successful, False otherwise
        """
        try:
            async with self.async_session_factory() as session:
                await session.execute(text("SELECT 1"))
                return True
        except Exception as e:
            logger.error(f"Database connection test failed: {e}")
            return False

    def get_connection_info(self) -> Dict[str, Any]:
        """
        Get information about the current connection pool.

        Returns:
            dict: Connection pool information and lease metrics
        """
        if not self.async_engine:
            return {"status": "not_initialized"}

        pool = self.async_engine.pool
        info: Dict[str, Any] = {
            "status": "initialized",
            "pool_type": type(pool).__name__,
            "metrics": self.metrics.get_metrics(),
        }
        for attribute in ("size", "checkedin", "checkedout", "overflow"):
            method = getattr(pool, attribute, None)
            if callable(method):
                info[attribute] = method()
        return info

    async def close(self):
        """
        Close the async database engine and all connections.
        """
        if self.async_engine:
            try:
                await self.async_engine.dispose()
                logger.info("Async database engine disposed successfully")
            except Exception as e:
                logger.error(f"Error disposing async database engine: {e}")
            finally:
                self._is_initialized = False
                self.async_engine = None
                self.async_session_factory = None


# Global async database manager instance (one shared pool per process)
_async_db_manager: Optional[AsyncDatabaseManager] = None


def get_async_db_manager() -> AsyncDatabaseManager:
    """
    Get or create the process-wide database manager.

    Also usable as a FastAPI dependency; tests override it with a manager
    bound to their own database.
    """
    global _async_db_manager

    if _async_db_manager is None:
        _async_db_manager = AsyncDatabaseManager()
        logger.info("Created new AsyncDatabaseManager instance")

    return _async_db_manager


async def get_async_db(
    manager: AsyncDatabaseManager = Depends(get_async_db_manager)
) -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for async database session injection.

    The session is rolled back on any exception and closed after the
    request, returning its connection to the pool.

    Example:
        @router.get("/conversations")
        async def list_conversations(db: AsyncSession = Depends(get_async_db)):
            ...
    """
    async with manager.lease() as session:
        yield session


# Database startup and shutdown handlers
async def startup_async_database():
    """
    Initialize the database manager on application startup.

    Raises:
        RuntimeError: If no connection can be established
    """
    logger.info("Starting async database initialization...")
    manager = get_async_db_manager()

    if not await manager.test_connection():
        raise RuntimeError("Failed to establish database connection during startup")

    if settings.AUTO_CREATE_TABLES:
        await manager.create_all()
        logger.info("Database tables created")

    logger.info(f"Async database startup completed. Pool info: {manager.get_connection_info()}")


async def shutdown_async_database():
    """Dispose of the pool on application shutdown."""
    global _async_db_manager

    logger.info("Starting async database shutdown...")
    if _async_db_manager is not None:
        await _async_db_manager.close()
        _async_db_manager = None
    logger.info("Async database shutdown completed successfully")

