"""
In-Memory Remote Store

A complete, single-process implementation of RemoteStore.

TRADEOFFS:
- Nothing survives the process (fine for development and tests)
- Change events are dispatched with loop.call_soon, so like a real
  change feed they reach subscribers only after the writer yields,
  never inside the write call itself
- Filters are column equality only, which is all the sync core uses
"""

import asyncio
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional
from uuid import uuid4

import structlog

from budgetsync.errors import (
    MutationError,
    RecordNotFoundError,
    SubscriptionError,
)
from budgetsync.models.changes import ChangeEvent, ChangeEventType, Table
from budgetsync.models.records import (
    Budget,
    BudgetWithExpenses,
    CurrentUser,
    Expense,
    Group,
    Membership,
    MembershipRole,
    sort_expenses,
)
from budgetsync.services.remote.interface import (
    ChangeCallback,
    ChangeChannel,
    RemoteStore,
)


logger = structlog.get_logger(__name__)


class InMemoryChangeChannel(ChangeChannel):
    """Change channel backed by an InMemoryRemoteStore."""

    def __init__(self, store: "InMemoryRemoteStore", table: Table, filters: dict[str, str]):
        self._store = store
        self._table = table
        self._filters = {k: str(v) for k, v in filters.items()}
        self._callbacks: list[ChangeCallback] = []
        self._subscribed = False

    @property
    def name(self) -> str:
        suffix = "-".join(self._filters.values())
        return f"{self._table.value}-{suffix}" if suffix else self._table.value

    @property
    def is_subscribed(self) -> bool:
        return self._subscribed

    def on_change(self, callback: ChangeCallback) -> "InMemoryChangeChannel":
        self._callbacks.append(callback)
        return self

    async def subscribe(self) -> None:
        if self._store.refuse_subscriptions:
            raise SubscriptionError(f"Subscription refused for channel {self.name}")
        # Confirmation arrives asynchronously, like a server ack
        await asyncio.sleep(0)
        self._store._attach(self)
        self._subscribed = True

    async def unsubscribe(self) -> None:
        self._store._detach(self)
        self._subscribed = False

    def matches(self, table: Table, row: dict) -> bool:
        if table != self._table:
            return False
        return all(str(row.get(column)) == value for column, value in self._filters.items())

    def deliver(self, event: ChangeEvent) -> None:
        # A channel torn down after dispatch was scheduled drops the event
        if not self._subscribed:
            return
        for callback in list(self._callbacks):
            callback(event)


class InMemoryRemoteStore(RemoteStore):
    """
    In-memory implementation of the remote store.

    Rows are held as frozen models; change events carry their JSON form,
    as a real change feed would.
    """

    def __init__(self, current_user_id: Optional[str] = None):
        self._current_user = CurrentUser(id=current_user_id) if current_user_id else None
        self._groups: dict[str, Group] = {}
        self._memberships: list[Membership] = []
        self._budgets: dict[str, Budget] = {}
        self._expenses: dict[str, Expense] = {}
        self._channels: list[InMemoryChangeChannel] = []
        self._last_timestamp: Optional[datetime] = None
        self.refuse_subscriptions = False

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def sign_in(self, user_id: str) -> CurrentUser:
        self._current_user = CurrentUser(id=user_id)
        return self._current_user

    def sign_out(self) -> None:
        self._current_user = None

    @property
    def active_channels(self) -> list[InMemoryChangeChannel]:
        return list(self._channels)

    def _now(self) -> datetime:
        """Strictly increasing server clock."""
        now = datetime.now(timezone.utc)
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now

    def _attach(self, channel: InMemoryChangeChannel) -> None:
        if channel not in self._channels:
            self._channels.append(channel)

    def _detach(self, channel: InMemoryChangeChannel) -> None:
        if channel in self._channels:
            self._channels.remove(channel)

    def _emit(
        self,
        table: Table,
        event_type: ChangeEventType,
        row: dict,
        old_row: Optional[dict] = None,
    ) -> None:
        if not self._channels:
            return
        loop = asyncio.get_running_loop()
        event = ChangeEvent(event_type=event_type, table=table, row=row, old_row=old_row)
        for channel in list(self._channels):
            if channel.matches(table, row):
                loop.call_soon(channel.deliver, event)

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    async def get_current_user(self) -> Optional[CurrentUser]:
        return self._current_user

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    async def list_memberships(self, user_id: str) -> list[Membership]:
        return [m for m in self._memberships if m.user_id == user_id]

    async def list_groups(self, group_ids: list[str]) -> list[Group]:
        return [self._groups[gid] for gid in group_ids if gid in self._groups]

    async def insert_group(self, owner_id: str) -> Group:
        group = Group(id=str(uuid4()), owner_id=owner_id, created_at=self._now())
        self._groups[group.id] = group
        self._emit(Table.GROUPS, ChangeEventType.INSERT, group.model_dump(mode="json"))
        return group

    async def insert_membership(
        self,
        group_id: str,
        user_id: str,
        role: MembershipRole,
    ) -> Membership:
        if group_id not in self._groups:
            raise MutationError(f"Group does not exist: {group_id}")
        if any(m.group_id == group_id and m.user_id == user_id for m in self._memberships):
            raise MutationError(f"User {user_id} is already a member of {group_id}")
        membership = Membership(
            group_id=group_id,
            user_id=user_id,
            role=role,
            added_at=self._now(),
        )
        self._memberships.append(membership)
        self._emit(Table.GROUP_MEMBERS, ChangeEventType.INSERT, membership.model_dump(mode="json"))
        return membership

    async def delete_group(self, group_id: str) -> bool:
        removed = self._groups.pop(group_id, None)
        if removed is None:
            return False
        self._memberships = [m for m in self._memberships if m.group_id != group_id]
        self._emit(Table.GROUPS, ChangeEventType.DELETE, removed.model_dump(mode="json"))
        return True

    # ------------------------------------------------------------------
    # Budgets
    # ------------------------------------------------------------------

    async def list_budgets_with_expenses(
        self,
        group_ids: list[str],
    ) -> list[BudgetWithExpenses]:
        wanted = set(group_ids)
        rows = []
        for budget in self._budgets.values():
            if budget.group_id not in wanted:
                continue
            expenses = tuple(e for e in self._expenses.values() if e.budget_id == budget.id)
            rows.append(BudgetWithExpenses(**budget.model_dump(), expenses=expenses))
        rows.sort(key=lambda b: b.created_at, reverse=True)
        return rows

    async def insert_budget(self, group_id: str, name: str, amount: Decimal) -> Budget:
        if group_id not in self._groups:
            raise MutationError(f"Group does not exist: {group_id}")
        budget = Budget(
            id=str(uuid4()),
            group_id=group_id,
            name=name,
            amount=amount,
            created_at=self._now(),
        )
        self._budgets[budget.id] = budget
        self._emit(Table.BUDGETS, ChangeEventType.INSERT, budget.model_dump(mode="json"))
        return budget

    async def update_budget(self, budget_id: str, fields: dict) -> Budget:
        current = self._budgets.get(budget_id)
        if current is None:
            raise RecordNotFoundError(f"Budget not found: {budget_id}")
        allowed = {k: v for k, v in fields.items() if k in {"name", "amount"}}
        updated = Budget(**{**current.model_dump(), **allowed})
        self._budgets[budget_id] = updated
        self._emit(
            Table.BUDGETS,
            ChangeEventType.UPDATE,
            updated.model_dump(mode="json"),
            current.model_dump(mode="json"),
        )
        return updated

    async def delete_budget(self, budget_id: str) -> bool:
        removed = self._budgets.pop(budget_id, None)
        if removed is None:
            return False
        self._emit(Table.BUDGETS, ChangeEventType.DELETE, removed.model_dump(mode="json"))
        return True

    # ------------------------------------------------------------------
    # Expenses
    # ------------------------------------------------------------------

    async def list_expenses(self, budget_id: str) -> list[Expense]:
        return list(sort_expenses(e for e in self._expenses.values() if e.budget_id == budget_id))

    async def insert_expense(
        self,
        budget_id: str,
        description: str,
        amount: Decimal,
        expense_date: date,
        expense_id: Optional[str] = None,
    ) -> Expense:
        if budget_id not in self._budgets:
            raise MutationError(f"Budget does not exist: {budget_id}")
        expense_id = expense_id or str(uuid4())
        if expense_id in self._expenses:
            raise MutationError(f"Duplicate expense id: {expense_id}")
        expense = Expense(
            id=expense_id,
            budget_id=budget_id,
            description=description,
            amount=amount,
            expense_date=expense_date,
            created_at=self._now(),
        )
        self._expenses[expense.id] = expense
        self._emit(Table.EXPENSES, ChangeEventType.INSERT, expense.model_dump(mode="json"))
        return expense

    async def update_expense(self, expense_id: str, fields: dict) -> Expense:
        current = self._expenses.get(expense_id)
        if current is None:
            raise RecordNotFoundError(f"Expense not found: {expense_id}")
        allowed = {
            k: v for k, v in fields.items()
            if k in {"description", "amount", "expense_date"}
        }
        updated = Expense(**{**current.model_dump(), **allowed})
        self._expenses[expense_id] = updated
        self._emit(
            Table.EXPENSES,
            ChangeEventType.UPDATE,
            updated.model_dump(mode="json"),
            current.model_dump(mode="json"),
        )
        return updated

    async def delete_expense(self, expense_id: str) -> bool:
        removed = self._expenses.pop(expense_id, None)
        if removed is None:
            return False
        self._emit(Table.EXPENSES, ChangeEventType.DELETE, removed.model_dump(mode="json"))
        return True

    async def delete_expenses_for_budget(self, budget_id: str) -> int:
        doomed = [e for e in self._expenses.values() if e.budget_id == budget_id]
        for expense in doomed:
            del self._expenses[expense.id]
            self._emit(Table.EXPENSES, ChangeEventType.DELETE, expense.model_dump(mode="json"))
        logger.debug("expenses_deleted_for_budget", budget_id=budget_id, count=len(doomed))
        return len(doomed)

    # ------------------------------------------------------------------
    # Change notifications
    # ------------------------------------------------------------------

    def channel(self, table: Table, filters: dict[str, str]) -> InMemoryChangeChannel:
        return InMemoryChangeChannel(self, table, filters)
