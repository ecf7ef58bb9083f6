"""
Abstract Remote Store Interface

DESIGN DECISION: The sync core only ever talks to this interface.
This allows us to:
1. Back it with any relational service that offers CRUD + change feeds
2. Use an in-memory store for development and testing
3. Keep the optimistic-update logic decoupled from the wire protocol

Reads raise TransientFetchError, writes raise MutationError. Nothing else
escapes an implementation.
"""

from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import Callable, Optional

from budgetsync.models.changes import ChangeEvent, Table
from budgetsync.models.records import (
    Budget,
    BudgetWithExpenses,
    CurrentUser,
    Expense,
    Group,
    Membership,
    MembershipRole,
)


ChangeCallback = Callable[[ChangeEvent], None]


class ChangeChannel(ABC):
    """
    A subscription to row changes on one table, narrowed by equality filters.

    Register callbacks with on_change() before calling subscribe().
    Callbacks run on the event loop and must not block.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Channel name, e.g. 'expenses-<budget_id>'."""
        pass

    @abstractmethod
    def on_change(self, callback: ChangeCallback) -> "ChangeChannel":
        """Register a callback for every event on this channel."""
        pass

    @abstractmethod
    async def subscribe(self) -> None:
        """
        Start receiving events.

        Returns once the store has confirmed the subscription.

        Raises:
            SubscriptionError: If the store refuses the subscription
        """
        pass

    @abstractmethod
    async def unsubscribe(self) -> None:
        """Stop receiving events and release the channel. Idempotent."""
        pass


class RemoteStore(ABC):
    """
    Abstract interface for the remote relational store.

    Four collections: groups, group_members, budgets, expenses.
    """

    # ------------------------------------------------------------------
    # Identity
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_current_user(self) -> Optional[CurrentUser]:
        """
        Get the signed-in user.

        Returns:
            The user, or None when nobody is signed in
        """
        pass

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    @abstractmethod
    async def list_memberships(self, user_id: str) -> list[Membership]:
        """
        List a user's memberships, in the order they were created.

        Raises:
            TransientFetchError: If the read fails
        """
        pass

    @abstractmethod
    async def list_groups(self, group_ids: list[str]) -> list[Group]:
        """
        Fetch groups by id.

        Raises:
            TransientFetchError: If the read fails
        """
        pass

    @abstractmethod
    async def insert_group(self, owner_id: str) -> Group:
        """
        Create a group owned by the given user.

        Raises:
            MutationError: If the write fails
        """
        pass

    @abstractmethod
    async def insert_membership(
        self,
        group_id: str,
        user_id: str,
        role: MembershipRole,
    ) -> Membership:
        """
        Add a user to a group.

        Raises:
            MutationError: If the write fails or the pair already exists
        """
        pass

    @abstractmethod
    async def delete_group(self, group_id: str) -> bool:
        """
        Delete a group and any memberships pointing at it.

        Returns:
            True if a row was deleted

        Raises:
            MutationError: If the write fails
        """
        pass

    # ------------------------------------------------------------------
    # Budgets
    # ------------------------------------------------------------------

    @abstractmethod
    async def list_budgets_with_expenses(
        self,
        group_ids: list[str],
    ) -> list[BudgetWithExpenses]:
        """
        Fetch every budget of the given groups joined with its expenses.

        Returns:
            Budgets, newest created first

        Raises:
            TransientFetchError: If the read fails
        """
        pass

    @abstractmethod
    async def insert_budget(
        self,
        group_id: str,
        name: str,
        amount: Decimal,
    ) -> Budget:
        """
        Create a budget. The id and created_at are assigned by the store.

        Raises:
            MutationError: If the write fails
        """
        pass

    @abstractmethod
    async def update_budget(self, budget_id: str, fields: dict) -> Budget:
        """
        Update name and/or amount of a budget.

        Returns:
            The updated row

        Raises:
            RecordNotFoundError: If the budget does not exist
            MutationError: If the write fails
        """
        pass

    @abstractmethod
    async def delete_budget(self, budget_id: str) -> bool:
        """
        Delete a budget row (its expenses are NOT removed).

        Returns:
            True if a row was deleted

        Raises:
            MutationError: If the write fails
        """
        pass

    # ------------------------------------------------------------------
    # Expenses
    # ------------------------------------------------------------------

    @abstractmethod
    async def list_expenses(self, budget_id: str) -> list[Expense]:
        """
        Fetch a budget's expenses, expense_date descending.

        Raises:
            TransientFetchError: If the read fails
        """
        pass

    @abstractmethod
    async def insert_expense(
        self,
        budget_id: str,
        description: str,
        amount: Decimal,
        expense_date: date,
        expense_id: Optional[str] = None,
    ) -> Expense:
        """
        Create an expense.

        Args:
            expense_id: Client pre-assigned id. The store keeps it so the
                        change event for this insert carries the same id.

        Raises:
            MutationError: If the write fails or the id is taken
        """
        pass

    @abstractmethod
    async def update_expense(self, expense_id: str, fields: dict) -> Expense:
        """
        Update description, amount and/or expense_date of an expense.

        Raises:
            RecordNotFoundError: If the expense does not exist
            MutationError: If the write fails
        """
        pass

    @abstractmethod
    async def delete_expense(self, expense_id: str) -> bool:
        """
        Delete one expense.

        Raises:
            MutationError: If the write fails
        """
        pass

    @abstractmethod
    async def delete_expenses_for_budget(self, budget_id: str) -> int:
        """
        Delete every expense of a budget.

        Returns:
            Number of rows deleted

        Raises:
            MutationError: If the write fails
        """
        pass

    # ------------------------------------------------------------------
    # Change notifications
    # ------------------------------------------------------------------

    @abstractmethod
    def channel(self, table: Table, filters: dict[str, str]) -> ChangeChannel:
        """
        Create (but do not subscribe) a change channel.

        Args:
            table: Table to watch
            filters: Column equality filters, e.g. {"budget_id": "..."}
        """
        pass
