"""
End-to-end flows through BudgetSession.

Scenario from the add-expense form: a Groceries budget of 200 with one
4.50 Milk expense has 195.50 remaining, and adding Coffee 3.50 leaves 192.00.
"""

import json
import pytest
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from budgetsync.config import GeminiSettings
from budgetsync.errors import (
    AuthenticationError,
    ExtractionServiceError,
    ExtractionValidationError,
    MutationError,
    NotFoundError,
)
from budgetsync.models import AuditEventType
from budgetsync.orchestrator import BudgetSession, ExpenseAdded, create_session
from budgetsync.services.extraction import GeminiExtractionService

from conftest import FlakyRemoteStore


def extraction_service(payload) -> GeminiExtractionService:
    response = MagicMock()
    response.text = json.dumps(payload)
    model = MagicMock()
    model.generate_content_async = AsyncMock(return_value=response)
    return GeminiExtractionService(settings=GeminiSettings(), model=model)


async def groceries_session(remote, seed, settings, audit, extraction=None):
    group = await seed.group()
    budget = await seed.budget(group.id, "Groceries", 200)
    await seed.expense(budget.id, "Milk", "4.50")
    session = BudgetSession(
        remote,
        extraction_service=extraction,
        settings=settings,
        audit_logger=audit,
    )
    await session.start()
    return session, budget


class TestStart:

    @pytest.mark.asyncio
    async def test_start_loads_budgets_with_totals(self, remote, seed, settings, audit):
        session, budget = await groceries_session(remote, seed, settings, audit)

        view = session.budgets.get_budget(budget.id)
        assert view.total_expenses == Decimal("4.50")
        assert view.remaining == Decimal("195.50")

    @pytest.mark.asyncio
    async def test_first_start_provisions_group(self, remote, settings, audit):
        session = BudgetSession(remote, settings=settings, audit_logger=audit)

        budgets = await session.start()

        assert budgets == ()
        assert len(session.groups.groups) == 1
        assert session.groups.groups[0].is_owner

    @pytest.mark.asyncio
    async def test_start_without_user(self, settings, audit):
        session = BudgetSession(
            FlakyRemoteStore(current_user_id=None),
            settings=settings,
            audit_logger=audit,
        )
        with pytest.raises(AuthenticationError):
            await session.start()


class TestAddExpense:
    """Tests for the add-expense form flow."""

    @pytest.mark.asyncio
    async def test_add_expense_reports_remaining(self, remote, seed, settings, audit):
        session, budget = await groceries_session(remote, seed, settings, audit)
        await session.open_budget(budget.id)

        added = await session.add_expense(budget.id, "Coffee", "3.50", date(2024, 5, 2))

        assert isinstance(added, ExpenseAdded)
        assert added.remaining == Decimal("192.00")
        assert added.message == "Coffee for 3.50 was added to Groceries, 192.00 remaining"
        assert session.budgets.get_budget(budget.id).total_expenses == Decimal("8.00")
        assert [e.description for e in session.expenses.expenses] == ["Coffee", "Milk"]

    @pytest.mark.asyncio
    async def test_add_expense_to_budget_not_open(self, remote, seed, settings, audit):
        """Test that a budget's total rises even when it is not on screen."""
        session, budget = await groceries_session(remote, seed, settings, audit)

        added = await session.add_expense(budget.id, "Coffee", 3.5, "2024-05-02")

        assert added.remaining == Decimal("192.00")
        assert session.expenses.expenses == ()

    @pytest.mark.asyncio
    async def test_failed_add_changes_nothing(self, remote, seed, settings, audit):
        session, budget = await groceries_session(remote, seed, settings, audit)
        await session.open_budget(budget.id)
        remote.fail("insert_expense")

        with pytest.raises(MutationError):
            await session.add_expense(budget.id, "Coffee", "3.50", date(2024, 5, 2))

        assert session.budgets.get_budget(budget.id).total_expenses == Decimal("4.50")
        assert [e.description for e in session.expenses.expenses] == ["Milk"]

    @pytest.mark.asyncio
    async def test_unknown_budget(self, remote, seed, settings, audit):
        session, _ = await groceries_session(remote, seed, settings, audit)
        with pytest.raises(NotFoundError):
            await session.add_expense("missing", "Coffee", "3.50", date(2024, 5, 2))
        with pytest.raises(NotFoundError):
            await session.open_budget("missing")


class TestAddFromInput:
    """Tests for adding extracted transactions."""

    @pytest.mark.asyncio
    async def test_extracted_transactions_are_added(self, remote, seed, settings, audit):
        group = await seed.group()
        budget = await seed.budget(group.id, "Groceries", 200)
        service = extraction_service({"transactions": [
            {
                "Description": "Coffee",
                "Amount": 3.5,
                "Date": "2024-05-02",
                "Budget": "Groceries",
                "BudgetID": budget.id,
            },
            {
                "Description": "Bagel",
                "Amount": 2,
                "Date": "2024-05-02",
                "Budget": "Groceries",
                "BudgetID": budget.id,
            },
        ]})
        session = BudgetSession(
            remote, extraction_service=service, settings=settings, audit_logger=audit
        )
        await session.start()

        added = await session.add_from_input("coffee and a bagel this morning")

        assert [a.message for a in added] == [
            "Coffee for 3.50 was added to Groceries, 196.50 remaining",
            "Bagel for 2.00 was added to Groceries, 194.50 remaining",
        ]
        assert any(e.event_type == AuditEventType.EXTRACTION_COMPLETED for e in audit.history)

    @pytest.mark.asyncio
    async def test_rejected_extraction_touches_nothing(self, remote, seed, settings, audit):
        """Test that a string amount rejects the batch before any write."""
        group = await seed.group()
        budget = await seed.budget(group.id, "Groceries", 200)
        service = extraction_service({"transactions": [{
            "Description": "Coffee",
            "Amount": "3.50",
            "Date": "2024-05-02",
            "Budget": "Groceries",
            "BudgetID": budget.id,
        }]})
        session = BudgetSession(
            remote, extraction_service=service, settings=settings, audit_logger=audit
        )
        await session.start()
        version = session.budgets.version

        with pytest.raises(ExtractionValidationError):
            await session.add_from_input("coffee")

        assert remote.calls["insert_expense"] == 0
        assert session.budgets.version == version
        assert any(e.event_type == AuditEventType.EXTRACTION_REJECTED for e in audit.history)

    @pytest.mark.asyncio
    async def test_no_extraction_service_configured(self, remote, seed, settings, audit):
        session, _ = await groceries_session(remote, seed, settings, audit)
        with pytest.raises(ExtractionServiceError):
            await session.add_from_input("coffee")


class TestSessionLifecycle:

    @pytest.mark.asyncio
    async def test_close_releases_channel(self, remote, seed, settings, audit):
        session, budget = await groceries_session(remote, seed, settings, audit)
        await session.open_budget(budget.id)

        await session.close()

        assert remote.active_channels == []

    def test_create_session_defaults_to_memory_store(self, settings):
        session = create_session(user_id="someone")
        assert isinstance(session, BudgetSession)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
