"""
Budget Store

Local mirror of every budget the user can see, each with its expenses
and derived total.

CRITICAL RULES:
1. State is only written through the BudgetStateContainer
2. Expense edits are optimistic: applied locally first, rolled back if the
   remote store rejects them, and the rejection is re-raised
3. A failed load leaves an EMPTY collection plus an error, never stale data
4. Every failure is recorded in .error as a message fit for the user

DESIGN DECISION: Rollback is version-checked. If nothing committed since
the optimistic write, the pre-mutation snapshot is put back as-is.
Otherwise only the touched expense is repaired, so a concurrent load or
stream merge is not thrown away.
"""

from typing import Callable, Optional, Union
from uuid import UUID

import structlog
from tenacity import RetryCallState

from budgetsync.audit import AuditLogger, create_correlation_id, get_audit_logger
from budgetsync.config import SyncSettings, get_settings
from budgetsync.errors import (
    AuthenticationError,
    AuthorizationError,
    BudgetLoadError,
    MutationError,
    NotFoundError,
    SyncError,
    TransientFetchError,
)
from budgetsync.models import (
    AuditEventBuilder,
    BudgetUpdate,
    BudgetView,
    Expense,
    ExpenseUpdate,
    GroupMembershipView,
    sort_budgets,
    to_money,
)
from budgetsync.services.remote import RemoteStore
from budgetsync.sync.retry import describe_retry, linear_backoff
from budgetsync.sync.state import BudgetState, BudgetStateContainer
from budgetsync.sync.tasks import TaskSlot


logger = structlog.get_logger(__name__)


class BudgetStore:
    """Budgets of the user's groups, loaded with their expenses."""

    def __init__(
        self,
        remote: RemoteStore,
        settings: Optional[SyncSettings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._remote = remote
        self._settings = settings or get_settings().sync
        self._audit = audit_logger or get_audit_logger()
        self._container = BudgetStateContainer()
        self._slot = TaskSlot("budget_store")
        self._groups: tuple[GroupMembershipView, ...] = ()
        self.last_load_attempts = 0

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def snapshot(self) -> BudgetState:
        return self._container.snapshot

    @property
    def budgets(self) -> tuple[BudgetView, ...]:
        return self._container.snapshot.budgets

    @property
    def error(self) -> Optional[str]:
        return self._container.snapshot.error

    @property
    def version(self) -> int:
        return self._container.version

    @property
    def groups(self) -> tuple[GroupMembershipView, ...]:
        return self._groups

    def get_budget(self, budget_id: str) -> Optional[BudgetView]:
        return self._container.snapshot.find_budget(budget_id)

    def _fail(self, error: SyncError) -> SyncError:
        self._container.commit(error=error.user_message)
        return error

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(
        self,
        groups: list[GroupMembershipView],
        correlation_id: Optional[UUID] = None,
    ) -> tuple[BudgetView, ...]:
        """
        Replace the collection with the budgets of the given groups.

        A load already in flight is cancelled and its callers receive
        this load's result.

        Raises:
            BudgetLoadError: Every attempt failed; the collection is empty
        """
        self._groups = tuple(groups)
        correlation_id = correlation_id or create_correlation_id()
        return await self._slot.run(self._load_with_retry(self._groups, correlation_id))

    async def refresh(self) -> tuple[BudgetView, ...]:
        """Reload with the groups of the last load."""
        return await self.load(list(self._groups))

    async def _load_with_retry(
        self,
        groups: tuple[GroupMembershipView, ...],
        correlation_id: UUID,
    ) -> tuple[BudgetView, ...]:
        group_ids = [g.id for g in groups]
        if not group_ids:
            self.last_load_attempts = 0
            self._container.commit(budgets=(), error=None)
            return ()

        def before_sleep(retry_state: RetryCallState) -> None:
            attempt, delay, message = describe_retry(retry_state)
            self._container.commit(budgets=(), error=message)
            self._audit.log(AuditEventBuilder.fetch_retry_scheduled(
                "budget", attempt, delay, message, correlation_id
            ))

        attempts = 0
        try:
            async for attempt in linear_backoff(self._settings, before_sleep):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    self.last_load_attempts = attempts
                    rows = await self._remote.list_budgets_with_expenses(group_ids)
        except TransientFetchError as e:
            failure = BudgetLoadError(attempts=attempts)
            self._container.commit(budgets=(), error=failure.user_message)
            self._audit.log(AuditEventBuilder.load_failed(
                "budget", attempts, e.user_message, correlation_id
            ))
            raise failure from e
        except SyncError as e:
            self._container.commit(budgets=(), error=e.user_message)
            raise

        views = sort_budgets(BudgetView.from_join(row) for row in rows)
        self._container.commit(budgets=views, error=None)
        self._audit.log(AuditEventBuilder.budgets_loaded(len(views), attempts, correlation_id))
        return views

    # ------------------------------------------------------------------
    # Budget mutations
    # ------------------------------------------------------------------

    async def add_budget(
        self,
        name: str,
        amount,
        correlation_id: Optional[UUID] = None,
    ) -> BudgetView:
        """
        Create a budget in the first group the user owns.

        The new budget is added locally only after the remote store
        confirms it.

        Raises:
            AuthenticationError: Nobody is signed in
            AuthorizationError: The user owns none of the loaded groups
            MutationError: The insert failed
        """
        correlation_id = correlation_id or create_correlation_id()
        user = await self._remote.get_current_user()
        if user is None:
            raise self._fail(AuthenticationError())

        owner_group = next((g for g in self._groups if g.is_owner), None)
        if owner_group is None:
            raise self._fail(AuthorizationError())

        try:
            budget = await self._remote.insert_budget(owner_group.id, name, to_money(amount))
        except MutationError as e:
            self._fail(e)
            self._audit.log(AuditEventBuilder.mutation_failed(
                "budget", None, "create", e.user_message, correlation_id
            ))
            raise

        view = BudgetView.empty(budget)
        self._container.commit(budgets=(view,) + self.budgets, error=None)
        self._audit.log(AuditEventBuilder.budget_created(
            budget.id, budget.group_id, budget.name, correlation_id
        ))
        return view

    async def update_budget(
        self,
        budget_id: str,
        update: Union[BudgetUpdate, dict],
        correlation_id: Optional[UUID] = None,
    ) -> BudgetView:
        """
        Change a budget's name and/or amount.

        Fields equal to the current values are dropped; if nothing is
        left no request is made.
        """
        if isinstance(update, dict):
            update = BudgetUpdate(**update)
        correlation_id = correlation_id or create_correlation_id()

        budget = self.get_budget(budget_id)
        if budget is None:
            raise self._fail(NotFoundError("Budget not found"))

        changes = update.diff_against(budget)
        if not changes:
            self._audit.log(AuditEventBuilder.budget_updated(budget_id, [], correlation_id))
            return budget

        try:
            updated = await self._remote.update_budget(budget_id, changes)
        except MutationError as e:
            self._fail(e)
            self._audit.log(AuditEventBuilder.mutation_failed(
                "budget", budget_id, "update", e.user_message, correlation_id
            ))
            raise

        # Re-read: a load may have replaced the view while we waited
        current = self.get_budget(budget_id)
        if current is not None:
            self._container.replace_budget(
                current.with_fields({"name": updated.name, "amount": updated.amount}),
                error=None,
            )
        self._audit.log(AuditEventBuilder.budget_updated(
            budget_id, sorted(changes), correlation_id
        ))
        return self.get_budget(budget_id) or budget.with_fields(changes)

    async def delete_budget(
        self,
        budget_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Delete a budget and all its expenses.

        Expenses go first. If the budget delete then fails the remote store
        is left with an empty budget; the local view keeps it and the
        divergence is logged.
        """
        correlation_id = correlation_id or create_correlation_id()
        if self.get_budget(budget_id) is None:
            raise self._fail(NotFoundError("Budget not found"))

        try:
            expense_count = await self._remote.delete_expenses_for_budget(budget_id)
        except MutationError as e:
            self._fail(e)
            self._audit.log(AuditEventBuilder.mutation_failed(
                "budget", budget_id, "delete", e.user_message, correlation_id
            ))
            raise

        try:
            await self._remote.delete_budget(budget_id)
        except MutationError as e:
            self._fail(e)
            self._audit.log(AuditEventBuilder.budget_diverged(
                budget_id, e.user_message, correlation_id
            ))
            raise

        self._container.commit(
            budgets=tuple(b for b in self.budgets if b.id != budget_id),
            error=None,
        )
        self._audit.log(AuditEventBuilder.budget_deleted(budget_id, expense_count, correlation_id))

    # ------------------------------------------------------------------
    # Expense mutations (optimistic)
    # ------------------------------------------------------------------

    def _locate_expense(self, expense_id: str) -> tuple[BudgetView, Expense]:
        owner = self._container.snapshot.find_expense_owner(expense_id)
        if owner is None:
            raise self._fail(NotFoundError("Expense not found"))
        return owner, owner.find_expense(expense_id)

    def _rollback(
        self,
        before: BudgetState,
        applied: BudgetState,
        repair: Callable[[str], None],
        error_message: str,
    ) -> None:
        if self._container.version == applied.version:
            self._container.restore(before, error=error_message)
        else:
            logger.debug(
                "rollback_repair",
                applied_version=applied.version,
                current_version=self._container.version,
            )
            repair(error_message)

    def _restore_expense(self, original: Expense, error_message: str) -> None:
        """Put one expense back as it was, leaving the rest of the state alone."""
        budget = self.get_budget(original.budget_id)
        if budget is None:
            self._container.commit(error=error_message)
            return
        others = [e for e in budget.expenses if e.id != original.id]
        self._container.replace_budget(
            budget.with_expenses(others + [original]),
            error=error_message,
        )

    async def update_expense(
        self,
        expense_id: str,
        update: Union[ExpenseUpdate, dict],
        correlation_id: Optional[UUID] = None,
    ) -> Expense:
        """
        Edit an expense optimistically.

        Raises:
            NotFoundError: No loaded budget holds the expense
            MutationError: The remote update failed (local state rolled back)
        """
        if isinstance(update, dict):
            update = ExpenseUpdate(**update)
        correlation_id = correlation_id or create_correlation_id()

        before = self._container.snapshot
        owner, current = self._locate_expense(expense_id)
        changes = update.diff_against(current)
        if not changes:
            return current

        optimistic = current.model_copy(update=changes)
        applied = self._container.replace_budget(owner.with_expenses(
            optimistic if e.id == expense_id else e for e in owner.expenses
        ))
        self._audit.log(AuditEventBuilder.expense_optimistic_applied(
            expense_id, owner.id, "update", correlation_id
        ))

        try:
            confirmed = await self._remote.update_expense(expense_id, changes)
        except MutationError as e:
            self._rollback(
                before,
                applied,
                lambda message: self._restore_expense(current, message),
                e.user_message,
            )
            self._audit.log(AuditEventBuilder.expense_rolled_back(
                expense_id, owner.id, "update", e.user_message, correlation_id
            ))
            raise

        # Server values (created_at, normalisation) win over the optimistic row
        budget = self.get_budget(confirmed.budget_id)
        if budget is not None:
            others = [e for e in budget.expenses if e.id != expense_id]
            self._container.replace_budget(budget.with_expenses(others + [confirmed]), error=None)
        self._audit.log(AuditEventBuilder.expense_confirmed(
            expense_id, owner.id, "update", correlation_id
        ))
        return confirmed

    async def delete_expense(
        self,
        expense_id: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """
        Delete an expense optimistically.

        Raises:
            NotFoundError: No loaded budget holds the expense
            MutationError: The remote delete failed (local state rolled back)
        """
        correlation_id = correlation_id or create_correlation_id()

        before = self._container.snapshot
        owner, current = self._locate_expense(expense_id)
        applied = self._container.replace_budget(owner.with_expenses(
            e for e in owner.expenses if e.id != expense_id
        ))
        self._audit.log(AuditEventBuilder.expense_optimistic_applied(
            expense_id, owner.id, "delete", correlation_id
        ))

        try:
            deleted = await self._remote.delete_expense(expense_id)
        except MutationError as e:
            self._rollback(
                before,
                applied,
                lambda message: self._restore_expense(current, message),
                e.user_message,
            )
            self._audit.log(AuditEventBuilder.expense_rolled_back(
                expense_id, owner.id, "delete", e.user_message, correlation_id
            ))
            raise

        if not deleted:
            logger.debug("expense_already_gone", expense_id=expense_id)
        self._container.commit(error=None)
        self._audit.log(AuditEventBuilder.expense_confirmed(
            expense_id, owner.id, "delete", correlation_id
        ))

    def merge_expense(self, expense: Expense) -> bool:
        """
        Fold a confirmed new expense into its budget.

        Returns False when the budget is not loaded or already holds an
        expense with that id.
        """
        budget = self.get_budget(expense.budget_id)
        if budget is None or budget.has_expense(expense.id):
            return False
        self._container.replace_budget(budget.with_expenses(budget.expenses + (expense,)))
        return True

    async def close(self) -> None:
        """Cancel an in-flight load, including a pending retry wait."""
        await self._slot.close()
