"""Tests for the audit logger, settings, and task ownership."""

import asyncio
import pytest
from uuid import uuid4

from pydantic import ValidationError

from budgetsync.audit import AuditLogger, create_correlation_id
from budgetsync.config import AppSettings, SyncSettings, get_settings, validate_all_settings
from budgetsync.models import AuditEventBuilder
from budgetsync.sync import TaskSlot


class TestAuditLogger:

    def test_history_is_bounded(self):
        logger = AuditLogger(history_size=2)
        for count in range(3):
            logger.log(AuditEventBuilder.budgets_loaded(count, 1))
        assert [e.details["count"] for e in logger.history] == [1, 2]

    def test_events_for_correlation_id(self):
        """Test that one action's events can be read back together."""
        logger = AuditLogger()
        correlation_id = create_correlation_id()
        logger.log(AuditEventBuilder.expense_optimistic_applied("e1", "b1", "update", correlation_id))
        logger.log(AuditEventBuilder.budgets_loaded(1, 1, uuid4()))
        logger.log(AuditEventBuilder.expense_rolled_back("e1", "b1", "update", "nope", correlation_id))

        events = logger.events_for(correlation_id)
        assert [e.event_type.value for e in events] == [
            "expense_optimistic_applied",
            "expense_rolled_back",
        ]


class TestSettings:

    def test_sync_defaults(self, monkeypatch):
        monkeypatch.delenv("BUDGETSYNC_MAX_RETRIES", raising=False)
        monkeypatch.delenv("BUDGETSYNC_RETRY_BASE_DELAY_SECONDS", raising=False)
        settings = SyncSettings()
        assert settings.max_retries == 3
        assert settings.retry_base_delay_seconds == 1.0

    def test_sync_from_environment(self, monkeypatch):
        monkeypatch.setenv("BUDGETSYNC_MAX_RETRIES", "5")
        assert SyncSettings().max_retries == 5

    def test_retry_bound_is_validated(self):
        with pytest.raises(ValidationError):
            SyncSettings(max_retries=-1)

    def test_log_level_is_validated(self):
        with pytest.raises(ValidationError):
            AppSettings(log_level="LOUD")

    def test_validate_all_settings(self):
        get_settings.cache_clear()
        results = validate_all_settings()
        assert results["sync"] is True
        assert results["app"] is True


class TestTaskSlot:

    @pytest.mark.asyncio
    async def test_superseded_caller_gets_newer_result(self):
        slot = TaskSlot("test")
        gate = asyncio.Event()

        async def slow():
            await gate.wait()
            return "old"

        async def fast():
            return "new"

        first = asyncio.ensure_future(slot.run(slow()))
        await asyncio.sleep(0)
        second = await slot.run(fast())

        assert second == "new"
        assert await first == "new"

    @pytest.mark.asyncio
    async def test_cancelled_caller_is_not_handed_over(self):
        """Test that cancelling a caller from outside is not mistaken for a supersede."""
        slot = TaskSlot("test")
        gate = asyncio.Event()

        async def slow(result):
            await gate.wait()
            return result

        first = asyncio.ensure_future(slot.run(slow("old")))
        await asyncio.sleep(0)
        second = asyncio.ensure_future(slot.run(slow("new")))
        await asyncio.sleep(0)
        # second has replaced first's run; now first's caller goes away too
        first.cancel()
        gate.set()

        with pytest.raises(asyncio.CancelledError):
            await first
        assert await second == "new"

    @pytest.mark.asyncio
    async def test_closed_slot_refuses_work(self):
        slot = TaskSlot("test")
        await slot.close()

        async def work():
            return 1

        with pytest.raises(RuntimeError):
            await slot.run(work())


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
