"""
Core Data Models for Budget Sync

These models mirror the four remote collections (groups, group_members,
budgets, expenses) plus the derived BudgetView the client displays.

DESIGN DECISION: Every record is a frozen Pydantic model.
Local state is never edited in place; a change produces a new value, which is
what makes optimistic updates reversible.

DESIGN DECISION: Amounts are Decimal quantized to cents, so a budget's total
is an exact sum and 200 - 4.50 is 195.50, not 195.49999.
"""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Iterable, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
)


CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    """Convert a number to a cent-quantized Decimal."""
    if isinstance(value, bool):
        raise ValueError("Amount must be a number")
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {value!r}")


# =============================================================================
# ENUMS
# =============================================================================

class MembershipRole(str, Enum):
    """
    Role a user holds in a group.

    Only owners may create budgets in a group.
    """
    OWNER = "owner"
    MEMBER = "member"


# =============================================================================
# IDENTITY AND GROUPS
# =============================================================================

class CurrentUser(BaseModel):
    """The signed-in user as reported by the identity provider."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)


class Group(BaseModel):
    """Ownership and sharing boundary for budgets."""
    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str
    created_at: Optional[datetime] = None


class Membership(BaseModel):
    """
    A (group, user) pair with the user's role.

    Composite identity: a user holds exactly one role per group.
    """
    model_config = ConfigDict(frozen=True)

    group_id: str
    user_id: str
    role: MembershipRole = MembershipRole.MEMBER
    added_at: Optional[datetime] = None


class GroupMembershipView(BaseModel):
    """A group together with the current user's role in it."""
    model_config = ConfigDict(frozen=True)

    group: Group
    role: MembershipRole

    @property
    def id(self) -> str:
        return self.group.id

    @property
    def is_owner(self) -> bool:
        return self.role == MembershipRole.OWNER


# =============================================================================
# BUDGETS AND EXPENSES
# =============================================================================

class Budget(BaseModel):
    """A spending limit belonging to exactly one group."""
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str
    group_id: str
    name: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., gt=0, description="Spending limit")
    created_at: Optional[datetime] = None

    @field_validator("amount", mode="before")
    @classmethod
    def quantize_amount(cls, v):
        return to_money(v)


class Expense(BaseModel):
    """
    A single expense belonging to exactly one budget.

    expense_date is a calendar date; created_at is the server timestamp
    (or the client's, for an optimistic row).
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: str
    budget_id: str
    description: str = Field(..., min_length=1, max_length=500)
    amount: Decimal = Field(..., gt=0)
    expense_date: date
    created_at: Optional[datetime] = None

    @field_validator("amount", mode="before")
    @classmethod
    def quantize_amount(cls, v):
        return to_money(v)


def _timestamp_key(value: Optional[datetime]) -> float:
    return value.timestamp() if value is not None else float("-inf")


def sort_expenses(expenses: Iterable[Expense]) -> tuple[Expense, ...]:
    """
    Order expenses newest first.

    expense_date descending, then created_at descending, then id ascending.
    Rows without created_at sort after timestamped rows of the same date.
    """
    by_id = sorted(expenses, key=lambda e: e.id)
    return tuple(sorted(
        by_id,
        key=lambda e: (e.expense_date, _timestamp_key(e.created_at)),
        reverse=True,
    ))


def sort_budgets(budgets: Iterable["BudgetView"]) -> tuple["BudgetView", ...]:
    """Order budgets newest-created first."""
    return tuple(sorted(
        budgets,
        key=lambda b: _timestamp_key(b.created_at),
        reverse=True,
    ))


class BudgetWithExpenses(Budget):
    """
    Typed join row: a budget fetched together with its expenses.

    This is what the remote store returns for "budgets with expenses";
    BudgetView.from_join turns it into the displayed view.
    """
    expenses: tuple[Expense, ...] = ()


class BudgetView(Budget):
    """
    A budget enriched with its loaded expenses and their total.

    total_expenses is computed from the held expenses on every access,
    so it cannot drift from the expense list.
    """
    expenses: tuple[Expense, ...] = ()

    @computed_field
    @property
    def total_expenses(self) -> Decimal:
        return sum((e.amount for e in self.expenses), Decimal("0.00"))

    @property
    def remaining(self) -> Decimal:
        """Amount left to spend (negative when overspent)."""
        return self.amount - self.total_expenses

    @classmethod
    def from_join(cls, row: BudgetWithExpenses) -> "BudgetView":
        """Aggregate a join row into a view with sorted expenses."""
        return cls(
            id=row.id,
            group_id=row.group_id,
            name=row.name,
            amount=row.amount,
            created_at=row.created_at,
            expenses=sort_expenses(row.expenses),
        )

    @classmethod
    def empty(cls, budget: Budget) -> "BudgetView":
        """View for a freshly created budget with no expenses."""
        return cls(
            id=budget.id,
            group_id=budget.group_id,
            name=budget.name,
            amount=budget.amount,
            created_at=budget.created_at,
            expenses=(),
        )

    def find_expense(self, expense_id: str) -> Optional[Expense]:
        for expense in self.expenses:
            if expense.id == expense_id:
                return expense
        return None

    def has_expense(self, expense_id: str) -> bool:
        return self.find_expense(expense_id) is not None

    def with_expenses(self, expenses: Iterable[Expense]) -> "BudgetView":
        """Return a copy holding the given expenses, sorted."""
        return self.model_copy(update={"expenses": sort_expenses(expenses)})

    def with_fields(self, fields: dict) -> "BudgetView":
        """Return a copy with budget fields (name, amount) replaced."""
        allowed = {k: v for k, v in fields.items() if k in {"name", "amount"}}
        return self.model_copy(update=allowed)


# =============================================================================
# PARTIAL UPDATES
# =============================================================================

class BudgetUpdate(BaseModel):
    """Partial update for a budget. Unset fields are left alone."""
    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    amount: Optional[Decimal] = Field(default=None, gt=0)

    @field_validator("amount", mode="before")
    @classmethod
    def quantize_amount(cls, v):
        return None if v is None else to_money(v)

    def diff_against(self, current: Budget) -> dict:
        """Fields whose requested value differs from the current one."""
        changes = {}
        for field in ("name", "amount"):
            value = getattr(self, field)
            if value is not None and value != getattr(current, field):
                changes[field] = value
        return changes


class ExpenseUpdate(BaseModel):
    """Partial update for an expense. Unset fields are left alone."""
    model_config = ConfigDict(str_strip_whitespace=True)

    description: Optional[str] = Field(default=None, min_length=1, max_length=500)
    amount: Optional[Decimal] = Field(default=None, gt=0)
    expense_date: Optional[date] = None

    @field_validator("amount", mode="before")
    @classmethod
    def quantize_amount(cls, v):
        return None if v is None else to_money(v)

    def diff_against(self, current: Expense) -> dict:
        changes = {}
        for field in ("description", "amount", "expense_date"):
            value = getattr(self, field)
            if value is not None and value != getattr(current, field):
                changes[field] = value
        return changes
