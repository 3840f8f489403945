"""
Unit tests for the retention janitor.

Conversations are backdated directly in the database so the sweep can be
checked against the 3 day TTL without waiting.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from app.core.exceptions import UnavailableError
from app.models.conversation import Conversation
from app.models.message import Message
from app.models.user import User
from app.schemas.chat import MessageRole
from app.services.async_chat import AsyncChatService
from app.services.async_retention import RetentionJanitor


class TestRetentionSweep:
    """Test a single sweep."""

    @pytest.mark.asyncio
    async def test_expired_conversation_deleted_with_messages(self, async_db_session, db_utils, test_user):
        expired = await db_utils.create_aged_conversation(test_user.id, timedelta(days=4))
        await db_utils.add_aged_message(expired.id, timedelta(days=4))
        await db_utils.add_aged_message(expired.id, timedelta(days=4), content="bye")

        deleted = await RetentionJanitor.sweep(async_db_session)

        assert deleted == 1
        assert await db_utils.count_records(Conversation) == 0
        assert await db_utils.count_records(Message) == 0

    @pytest.mark.asyncio
    async def test_recent_conversation_kept(self, async_db_session, db_utils, test_user):
        await db_utils.create_aged_conversation(test_user.id, timedelta(days=1))

        deleted = await RetentionJanitor.sweep(async_db_session)

        assert deleted == 0
        assert await db_utils.count_records(Conversation) == 1

    @pytest.mark.asyncio
    async def test_conversation_touched_before_sweep_kept(self, async_db_session, db_utils, test_user):
        stale = await db_utils.create_aged_conversation(test_user.id, timedelta(days=4))
        await AsyncChatService.append_message(async_db_session, stale.id, MessageRole.USER, "still here")

        deleted = await RetentionJanitor.sweep(async_db_session)

        assert deleted == 0
        assert await db_utils.count_records(Conversation) == 1
        assert await db_utils.count_records(Message, conversation_id=stale.id) == 1

    @pytest.mark.asyncio
    async def test_only_expired_rows_deleted(self, async_db_session, db_utils, test_user):
        await db_utils.create_aged_conversation(test_user.id, timedelta(days=4), title="old")
        await db_utils.create_aged_conversation(test_user.id, timedelta(days=10), title="older")
        fresh = await db_utils.create_aged_conversation(test_user.id, timedelta(hours=2), title="fresh")

        deleted = await RetentionJanitor.sweep(async_db_session)

        assert deleted == 2
        remaining = await AsyncChatService.list_conversations(async_db_session, test_user.id)
        assert [c.id for c in remaining] == [fresh.id]

    @pytest.mark.asyncio
    async def test_no_matches_returns_zero(self, async_db_session):
        assert await RetentionJanitor.sweep(async_db_session) == 0

    @pytest.mark.asyncio
    async def test_users_survive_retention(self, async_db_session, db_utils, test_user):
        await db_utils.create_aged_conversation(test_user.id, timedelta(days=5))

        await RetentionJanitor.sweep(async_db_session)

        assert await db_utils.count_records(User) == 1


class TestRetentionJanitorLoop:
    """Test the background lifecycle."""

    @pytest.mark.asyncio
    async def test_run_once_records_outcome(self, db_manager, db_utils, test_user):
        await db_utils.create_aged_conversation(test_user.id, timedelta(days=4))
        janitor = RetentionJanitor(db_manager=db_manager)

        deleted = await janitor.run_once()

        assert deleted == 1
        status = janitor.get_status()
        assert status["last_deleted"] == 1
        assert status["total_deleted"] == 1
        assert status["last_sweep_at"] is not None

    @pytest.mark.asyncio
    async def test_start_sweeps_immediately(self, db_manager, db_utils, test_user):
        await db_utils.create_aged_conversation(test_user.id, timedelta(days=4))
        janitor = RetentionJanitor(db_manager=db_manager, interval_seconds=3600)

        await janitor.start()
        try:
            for _ in range(100):
                if janitor.last_sweep_at is not None:
                    break
                await asyncio.sleep(0.02)
        finally:
            await janitor.stop()

        assert janitor.total_deleted == 1
        assert janitor.is_running is False

    @pytest.mark.asyncio
    async def test_failing_sweep_is_logged_and_loop_continues(self):
        @asynccontextmanager
        async def broken_lease():
            raise UnavailableError("database down")
            yield

        manager = MagicMock()
        manager.lease = broken_lease
        janitor = RetentionJanitor(db_manager=manager, interval_seconds=0.01)

        await janitor.start()
        try:
            for _ in range(100):
                if janitor.failed_sweeps >= 2:
                    break
                await asyncio.sleep(0.02)
        finally:
            await janitor.stop()

        assert janitor.failed_sweeps >= 2
        assert janitor.total_deleted == 0
