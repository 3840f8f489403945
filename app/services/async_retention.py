"""
Retention janitor: deletes conversations that have been idle past their TTL.

A sweep runs once at startup and then on a fixed interval in a background
task, following the same start/stop lifecycle as the other background
services. A failing sweep is logged and the loop keeps going.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.db.async_session import AsyncDatabaseManager, get_async_db_manager
from app.db.types import utcnow
from app.models.conversation import Conversation
from app.models.message import Message
from app.services.async_error_handler import handle_async_db_errors
from app.utils.logger import retention_logger

logger = logging.getLogger(__name__)


class RetentionJanitor:
    """
    Background service deleting conversations whose ``updated_at`` is older
    than the retention TTL.
    """

    def __init__(
        self,
        db_manager: Optional[AsyncDatabaseManager] = None,
        ttl: Optional[timedelta] = None,
        interval_seconds: Optional[float] = None
    ):
        self.db_manager = db_manager
        self.ttl = ttl or timedelta(days=settings.RETENTION_TTL_DAYS)
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None
            else settings.RETENTION_SWEEP_INTERVAL_HOURS * 3600
        )
        self.is_running = False
        self.sweep_task: Optional[asyncio.Task] = None
        self.last_sweep_at: Optional[datetime] = None
        self.last_deleted = 0
        self.total_deleted = 0
        self.failed_sweeps = 0

    @staticmethod
    @handle_async_db_errors("retention sweep")
    async def sweep(
        db: AsyncSession,
        now: Optional[datetime] = None,
        ttl: Optional[timedelta] = None
    ) -> int:
        """
        Delete every conversation idle for longer than ``ttl``, with its messages.

        Runs as one transaction. Candidate rows are locked with
        ``FOR UPDATE SKIP LOCKED`` so a conversation an append is currently
        bumping is left alone, and both DELETEs re-check the age filter so a
        conversation touched after selection survives.

        Returns:
            int: Number of conversations deleted
        """
        now = now or utcnow()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        cutoff = now - (ttl or timedelta(days=settings.RETENTION_TTL_DAYS))

        result = await db.execute(
            select(Conversation.id)
            .where(Conversation.updated_at < cutoff)
            .with_for_update(skip_locked=True)
        )
        candidate_ids = list(result.scalars().all())

        if not candidate_ids:
            await db.rollback()
            return 0

        still_expired = (
            select(Conversation.id)
            .where(Conversation.id.in_(candidate_ids))
            .where(Conversation.updated_at < cutoff)
        )

        await db.execute(
            delete(Message)
            .where(Message.conversation_id.in_(still_expired))
            .execution_options(synchronize_session=False)
        )
        deleted = await db.execute(
            delete(Conversation)
            .where(Conversation.id.in_(candidate_ids))
            .where(Conversation.updated_at < cutoff)
            .execution_options(synchronize_session=False)
        )

        await db.commit()
        return deleted.rowcount or 0

    def _get_manager(self) -> AsyncDatabaseManager:
        if self.db_manager is None:
            self.db_manager = get_async_db_manager()
        return self.db_manager

    async def run_once(self, now: Optional[datetime] = None) -> int:
        """Run one sweep on its own session lease and record the outcome."""
        manager = self._get_manager()
        async with manager.lease() as db:
            deleted = await self.sweep(db, now=now, ttl=self.ttl)

        self.last_sweep_at = utcnow()
        self.last_deleted = deleted
        self.total_deleted += deleted
        retention_logger.info(
            f"Cleaned up {deleted} old conversations",
            "sweep",
            ttl_days=self.ttl.days
        )
        return deleted

    async def start(self):
        """Start the background sweep task; the first sweep runs immediately."""
        if self.is_running:
            logger.warning("Retention janitor is already running")
            return

        self.is_running = True
        self.sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info(f"Started retention janitor with {self.interval_seconds}s interval")

    async def stop(self):
        """Stop the background sweep task."""
        if not self.is_running:
            return

        self.is_running = False
        if self.sweep_task:
            self.sweep_task.cancel()
            try:
                await self.sweep_task
            except asyncio.CancelledError:
                pass
            self.sweep_task = None

        logger.info("Stopped retention janitor")

    async def _sweep_loop(self):
        while self.is_running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.failed_sweeps += 1
                retention_logger.error(f"Retention sweep failed: {e}", "sweep")

            try:
                await asyncio.sleep(self.interval_seconds)
            except asyncio.CancelledError:
                break

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "ttl_days": self.ttl.days,
            "interval_seconds": self.interval_seconds,
            "last_sweep_at": self.last_sweep_at.isoformat() if self.last_sweep_at else None,
            "last_deleted": self.last_deleted,
            "total_deleted": self.total_deleted,
            "failed_sweeps": self.failed_sweeps,
        }


# Global janitor instance
_retention_janitor: Optional[RetentionJanitor] = None


def get_retention_janitor() -> RetentionJanitor:
    global _retention_janitor

    if _retention_janitor is None:
        _retention_janitor = RetentionJanitor()

    return _retention_janitor


async def start_retention_janitor():
    """Start the janitor on application startup unless retention is disabled."""
    if not settings.RETENTION_ENABLED:
        logger.info("Retention janitor disabled by configuration")
        return
    await get_retention_janitor().start()


async def stop_retention_janitor():
    global _retention_janitor

    if _retention_janitor is not None:
        await _retention_janitor.stop()
        _retention_janitor = None
