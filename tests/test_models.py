"""
Tests for Budget Sync models

Test strategy:
1. Unit tests for individual components (models, validators, stores)
2. Flow tests against the in-memory remote store
3. No real API calls in tests (use mocks)
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

from pydantic import ValidationError

from budgetsync.models import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
    Budget,
    BudgetUpdate,
    BudgetView,
    BudgetWithExpenses,
    ChangeEvent,
    ChangeEventType,
    Expense,
    ExpenseUpdate,
    Group,
    GroupMembershipView,
    MembershipRole,
    Table,
    ValidationIssue,
    ValidationResult,
    sort_budgets,
    sort_expenses,
    to_money,
)


T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_expense(expense_id, amount="1.00", day=1, created_at=T0, budget_id="b1"):
    return Expense(
        id=expense_id,
        budget_id=budget_id,
        description=f"Expense {expense_id}",
        amount=amount,
        expense_date=date(2024, 5, day),
        created_at=created_at,
    )


class TestMoney:
    """Tests for amount handling."""

    def test_amounts_are_quantized_to_cents(self):
        """Test that amounts are stored with two decimal places."""
        assert to_money(4.5) == Decimal("4.50")
        assert to_money("3.456") == Decimal("3.46")
        assert str(to_money(200)) == "200.00"

    def test_booleans_are_not_amounts(self):
        """Test that True is not accepted as 1."""
        with pytest.raises(ValueError):
            to_money(True)

    def test_garbage_is_rejected(self):
        with pytest.raises(ValueError):
            to_money("lots")


class TestRecordModels:
    """Tests for budget and expense records."""

    def test_budget_rejects_non_positive_amount(self):
        """Test that a budget needs a positive limit."""
        with pytest.raises(ValidationError):
            Budget(id="b1", group_id="g1", name="Groceries", amount=0)

    def test_budget_strips_whitespace(self):
        budget = Budget(id="b1", group_id="g1", name="  Groceries  ", amount=200)
        assert budget.name == "Groceries"

    def test_expense_is_frozen(self):
        """Test that records cannot be edited in place."""
        expense = make_expense("e1")
        with pytest.raises(ValidationError):
            expense.amount = Decimal("2.00")

    def test_expense_rejects_negative_amount(self):
        with pytest.raises(ValidationError):
            make_expense("e1", amount="-1")

    def test_membership_view_exposes_group_and_role(self):
        view = GroupMembershipView(
            group=Group(id="g1", owner_id="u1"),
            role=MembershipRole.OWNER,
        )
        assert view.id == "g1"
        assert view.is_owner is True


class TestOrdering:
    """Tests for the expense and budget orderings."""

    def test_expenses_newest_date_first(self):
        expenses = [make_expense("a", day=1), make_expense("b", day=3), make_expense("c", day=2)]
        assert [e.id for e in sort_expenses(expenses)] == ["b", "c", "a"]

    def test_same_date_orders_by_created_at_then_id(self):
        """Test the tie-break: newer created_at first, then id ascending."""
        later = T0 + timedelta(seconds=5)
        expenses = [
            make_expense("z", created_at=T0),
            make_expense("b", created_at=later),
            make_expense("a", created_at=later),
            make_expense("n", created_at=None),
        ]
        assert [e.id for e in sort_expenses(expenses)] == ["a", "b", "z", "n"]

    def test_budgets_newest_created_first(self):
        old = BudgetView(id="old", group_id="g", name="Old", amount=1, created_at=T0)
        new = BudgetView(
            id="new", group_id="g", name="New", amount=1,
            created_at=T0 + timedelta(days=1),
        )
        assert [b.id for b in sort_budgets([old, new])] == ["new", "old"]


class TestBudgetView:
    """Tests for the derived budget view."""

    def test_from_join_sorts_and_totals(self):
        """Test that the join row is aggregated into a sorted view with a total."""
        row = BudgetWithExpenses(
            id="b1",
            group_id="g1",
            name="Groceries",
            amount=200,
            expenses=(make_expense("e1", "4.50", day=1), make_expense("e2", "10.25", day=2)),
        )
        view = BudgetView.from_join(row)
        assert [e.id for e in view.expenses] == ["e2", "e1"]
        assert view.total_expenses == Decimal("14.75")
        assert view.remaining == Decimal("185.25")

    def test_empty_view_total_is_zero(self):
        budget = Budget(id="b1", group_id="g1", name="Groceries", amount=200)
        view = BudgetView.empty(budget)
        assert view.expenses == ()
        assert view.total_expenses == Decimal("0.00")

    def test_total_follows_expenses(self):
        """Test that a copy with other expenses has a matching total."""
        view = BudgetView(id="b1", group_id="g1", name="Groceries", amount=200)
        updated = view.with_expenses([make_expense("e1", "4.50")])
        assert updated.total_expenses == Decimal("4.50")
        assert view.total_expenses == Decimal("0.00")

    def test_total_is_serialized(self):
        view = BudgetView(
            id="b1", group_id="g1", name="Groceries", amount=200,
            expenses=(make_expense("e1", "4.50"),),
        )
        assert view.model_dump()["total_expenses"] == Decimal("4.50")

    def test_with_fields_only_touches_budget_fields(self):
        view = BudgetView(id="b1", group_id="g1", name="Groceries", amount=200)
        updated = view.with_fields({"name": "Food", "id": "other"})
        assert updated.name == "Food"
        assert updated.id == "b1"


class TestPartialUpdates:
    """Tests for BudgetUpdate / ExpenseUpdate diffs."""

    def test_budget_diff_drops_equal_fields(self):
        budget = Budget(id="b1", group_id="g1", name="Groceries", amount=200)
        assert BudgetUpdate(name="Groceries", amount="200").diff_against(budget) == {}
        assert BudgetUpdate(amount=250).diff_against(budget) == {"amount": Decimal("250.00")}

    def test_expense_diff(self):
        expense = make_expense("e1", "4.50")
        update = ExpenseUpdate(description="Expense e1", amount="5")
        assert update.diff_against(expense) == {"amount": Decimal("5.00")}


class TestChangeEvents:

    def test_row_id(self):
        event = ChangeEvent(
            event_type=ChangeEventType.INSERT,
            table=Table.EXPENSES,
            row={"id": 42},
        )
        assert event.row_id == "42"


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.BUDGETS_LOADED,
            description="Loaded budgets",
        )
        assert event.event_type == AuditEventType.BUDGETS_LOADED
        assert event.severity == AuditSeverity.INFO

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.BUDGET_CREATED,
            description="Budget created",
            details={"group_id": "g1"},
        )
        log_dict = event.to_log_dict()
        assert "event_id" in log_dict
        assert log_dict["event_type"] == "budget_created"
        assert log_dict["details"]["group_id"] == "g1"

    def test_builder_retry_scheduled(self):
        """Test that retry events carry the attempt and the delay."""
        correlation_id = uuid4()
        event = AuditEventBuilder.fetch_retry_scheduled(
            "budget", 2, 2.0, "Could not reach the server", correlation_id
        )
        assert event.event_type == AuditEventType.FETCH_RETRY_SCHEDULED
        assert event.severity == AuditSeverity.WARNING
        assert event.details == {"attempt": 2, "delay_seconds": 2.0}
        assert event.correlation_id == correlation_id

    def test_builder_empty_update_is_skipped(self):
        event = AuditEventBuilder.budget_updated("b1", [])
        assert event.event_type == AuditEventType.BUDGET_UPDATE_SKIPPED

    def test_builder_stream_event(self):
        merged = AuditEventBuilder.stream_event("e1", "b1", merged=True, reason="new expense")
        dropped = AuditEventBuilder.stream_event("e1", "b1", merged=False, reason="already present")
        assert merged.event_type == AuditEventType.STREAM_EVENT_MERGED
        assert dropped.event_type == AuditEventType.STREAM_EVENT_DISCARDED


class TestValidationResult:
    """Tests for ValidationResult model."""

    def test_validation_result_has_errors(self):
        """Test has_errors property."""
        result = ValidationResult(
            structure_valid=True,
            transactions_valid=False,
            issues=[
                ValidationIssue(
                    field="Amount",
                    issue_type="invalid_type",
                    message="Transaction 1: Amount must be a number",
                ),
            ],
        )
        assert result.has_errors is True
        assert result.is_valid is False
        assert result.error_count == 1
        assert result.first_error_message() == "Transaction 1: Amount must be a number"

    def test_validation_result_warnings_only(self):
        """Test that warnings don't count as errors."""
        result = ValidationResult(
            structure_valid=True,
            transactions_valid=True,
            issues=[
                ValidationIssue(
                    field="Budget",
                    issue_type="missing",
                    message="Budget name missing",
                    severity="warning",
                ),
            ],
        )
        assert result.has_errors is False
        assert result.error_count == 0
        assert result.first_error_message() is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
