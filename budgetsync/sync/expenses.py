"""
Expense Stream

Live, ordered list of the expenses of the budget the user is looking at.

The list is filled by one fetch and kept current by the change channel of
that budget. The user's own inserts appear immediately (optimistically) and
must not show up a second time when the channel echoes them back.

DESIGN DECISION: Each insert carries a PendingInsert token whose
expense_id is generated here and sent to the remote store as the row id.
The echo is recognised by that id, not by comparing field values, so two
identical "Coffee 3.50" expenses are never confused.

CRITICAL RULES:
1. The old channel is unsubscribed before a new one is created
2. Events from a channel that is no longer current are ignored
3. Expense ids in the list are unique at all times
"""

from datetime import date, datetime, timezone
from typing import Optional, Union
from uuid import UUID, uuid4

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from budgetsync.audit import AuditLogger, create_correlation_id, get_audit_logger
from budgetsync.errors import (
    MutationError,
    NoBudgetSelectedError,
    SubscriptionError,
    SyncError,
)
from budgetsync.models import (
    AuditEventBuilder,
    ChangeEvent,
    ChangeEventType,
    Expense,
    SubscriptionState,
    Table,
    sort_expenses,
)
from budgetsync.services.remote import ChangeChannel, RemoteStore


logger = structlog.get_logger(__name__)


class PendingInsert(BaseModel):
    """Correlation token for one in-flight local insert."""
    model_config = ConfigDict(frozen=True)

    correlation_id: UUID
    expense_id: str
    budget_id: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ExpenseStream:
    """Expenses of the currently open budget, kept live."""

    def __init__(
        self,
        remote: RemoteStore,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._remote = remote
        self._audit = audit_logger or get_audit_logger()
        self._budget_id: Optional[str] = None
        self._expenses: tuple[Expense, ...] = ()
        self._pending: dict[str, PendingInsert] = {}
        self._channel: Optional[ChangeChannel] = None
        self._state = SubscriptionState.UNSUBSCRIBED
        self._error: Optional[str] = None
        # Bumped on every open/close; work started under an older value is stale
        self._generation = 0

    @property
    def budget_id(self) -> Optional[str]:
        return self._budget_id

    @property
    def expenses(self) -> tuple[Expense, ...]:
        return self._expenses

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def pending(self) -> tuple[PendingInsert, ...]:
        return tuple(self._pending.values())

    def _set_state(self, state: SubscriptionState, error_message: Optional[str] = None) -> None:
        self._state = state
        self._audit.log(AuditEventBuilder.subscription_changed(
            self._budget_id, state.value, error_message
        ))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self, budget_id: str) -> tuple[Expense, ...]:
        """
        Show the expenses of a budget.

        Tears down the current channel, subscribes to the budget's channel,
        then fetches its expenses. Neither a subscription failure nor a
        fetch failure raises: both are recorded in .error, and a failed
        fetch leaves the list empty.
        """
        self._generation += 1
        generation = self._generation

        await self._teardown()
        if generation != self._generation:
            return self._expenses

        self._budget_id = budget_id
        self._expenses = ()
        self._error = None

        await self._subscribe(budget_id, generation)
        if generation != self._generation:
            return self._expenses

        await self._fetch(budget_id, generation)
        return self._expenses

    async def switch(self, budget_id: str) -> tuple[Expense, ...]:
        """Move to another budget. Re-selecting the open, live budget is a no-op."""
        if budget_id == self._budget_id and self._state == SubscriptionState.ACTIVE:
            return self._expenses
        return await self.open(budget_id)

    async def refresh(self) -> tuple[Expense, ...]:
        """Re-fetch the open budget's expenses, keeping the subscription."""
        if self._budget_id is None:
            return ()
        await self._fetch(self._budget_id, self._generation)
        return self._expenses

    async def close(self) -> None:
        self._generation += 1
        await self._teardown()
        self._budget_id = None
        self._expenses = ()
        self._error = None

    async def _teardown(self) -> None:
        channel = self._channel
        self._channel = None
        self._pending.clear()
        if channel is None:
            return
        await self._release(channel)
        if self._state != SubscriptionState.UNSUBSCRIBED:
            self._set_state(SubscriptionState.UNSUBSCRIBED)

    async def _release(self, channel: ChangeChannel) -> None:
        try:
            await channel.unsubscribe()
        except SubscriptionError as e:
            logger.warning("unsubscribe_failed", channel=channel.name, error=e.user_message)

    async def _subscribe(self, budget_id: str, generation: int) -> None:
        channel = self._remote.channel(Table.EXPENSES, {"budget_id": budget_id})
        channel.on_change(lambda event: self._handle_change(event, generation))
        self._channel = channel
        self._set_state(SubscriptionState.SUBSCRIBING)

        try:
            await channel.subscribe()
        except SubscriptionError as e:
            # A refused channel may still be half-open on the server side
            await self._release(channel)
            if generation == self._generation:
                self._channel = None
                self._error = e.user_message
                self._set_state(SubscriptionState.ERROR, e.user_message)
            return

        if generation != self._generation:
            # Superseded while waiting for the confirmation
            await self._release(channel)
            return
        self._set_state(SubscriptionState.ACTIVE)

    async def _fetch(self, budget_id: str, generation: int) -> None:
        try:
            rows = await self._remote.list_expenses(budget_id)
        except SyncError as e:
            if generation == self._generation:
                self._expenses = ()
                self._error = e.user_message
                logger.warning("expense_fetch_failed", budget_id=budget_id, error=e.user_message)
            return

        if generation != self._generation:
            return

        # Rows that arrived on the channel (or were added locally) while
        # fetching are kept; fetched rows win on id collisions
        merged = {e.id: e for e in rows}
        for expense in self._expenses:
            merged.setdefault(expense.id, expense)
        self._expenses = sort_expenses(merged.values())
        if self._state != SubscriptionState.ERROR:
            self._error = None

    # ------------------------------------------------------------------
    # Change events
    # ------------------------------------------------------------------

    def _handle_change(self, event: ChangeEvent, generation: int) -> None:
        if generation != self._generation:
            return

        if event.event_type != ChangeEventType.INSERT:
            self._audit.log(AuditEventBuilder.stream_event(
                event.row_id, self._budget_id, merged=False,
                reason=f"{event.event_type.value} events are not applied",
            ))
            return

        try:
            expense = Expense.model_validate(event.row)
        except ValidationError as e:
            logger.warning("malformed_change_row", row=event.row, error=str(e))
            self._audit.log(AuditEventBuilder.stream_event(
                event.row_id, self._budget_id, merged=False, reason="malformed row",
            ))
            return

        if expense.budget_id != self._budget_id:
            reason = "different budget"
        elif self._pending.pop(expense.id, None) is not None:
            reason = "echo of a local insert"
        elif any(e.id == expense.id for e in self._expenses):
            reason = "already present"
        else:
            self._expenses = sort_expenses(self._expenses + (expense,))
            self._audit.log(AuditEventBuilder.stream_event(
                expense.id, expense.budget_id, merged=True, reason="new expense",
            ))
            return

        self._audit.log(AuditEventBuilder.stream_event(
            expense.id, expense.budget_id, merged=False, reason=reason,
        ))

    # ------------------------------------------------------------------
    # Inserts
    # ------------------------------------------------------------------

    async def add_expense(
        self,
        description: str,
        amount,
        expense_date: Union[date, str],
        target_budget_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """
        Add an expense to a budget (the open one unless target_budget_id is given).

        When the target is the open budget the row is shown immediately and
        removed again if the insert fails.

        Returns:
            The expense as confirmed by the remote store

        Raises:
            NoBudgetSelectedError: No target given and no budget open
            MutationError: The insert failed
        """
        budget_id = target_budget_id or self._budget_id
        if budget_id is None:
            error = NoBudgetSelectedError()
            self._error = error.user_message
            raise error

        correlation_id = correlation_id or create_correlation_id()
        if isinstance(expense_date, str):
            expense_date = date.fromisoformat(expense_date)

        expense_id = str(uuid4())
        optimistic = Expense(
            id=expense_id,
            budget_id=budget_id,
            description=description,
            amount=amount,
            expense_date=expense_date,
            created_at=datetime.now(timezone.utc),
        )

        if budget_id == self._budget_id:
            self._pending[expense_id] = PendingInsert(
                correlation_id=correlation_id,
                expense_id=expense_id,
                budget_id=budget_id,
            )
            self._expenses = sort_expenses(self._expenses + (optimistic,))
            self._audit.log(AuditEventBuilder.expense_optimistic_applied(
                expense_id, budget_id, "insert", correlation_id
            ))

        try:
            confirmed = await self._remote.insert_expense(
                budget_id,
                optimistic.description,
                optimistic.amount,
                optimistic.expense_date,
                expense_id=expense_id,
            )
        except MutationError as e:
            self._pending.pop(expense_id, None)
            self._expenses = tuple(x for x in self._expenses if x.id != expense_id)
            self._error = e.user_message
            self._audit.log(AuditEventBuilder.expense_rolled_back(
                expense_id, budget_id, "insert", e.user_message, correlation_id
            ))
            raise

        self._audit.log(AuditEventBuilder.expense_confirmed(
            confirmed.id, budget_id, "insert", correlation_id
        ))
        return confirmed
