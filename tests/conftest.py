"""
Shared fixtures.

No real network: every test runs against InMemoryRemoteStore, optionally
wrapped so chosen calls fail or block until released.
"""

import asyncio
from collections import Counter
from datetime import date
from decimal import Decimal
from typing import Optional

import pytest

from budgetsync.audit import AuditLogger
from budgetsync.config import Settings, SyncSettings
from budgetsync.errors import MutationError, TransientFetchError
from budgetsync.models import Budget, Expense, MembershipRole
from budgetsync.services.remote import InMemoryRemoteStore


USER_ID = "user-1"

READS = {"list_memberships", "list_groups", "list_budgets_with_expenses", "list_expenses"}


class FlakyRemoteStore(InMemoryRemoteStore):
    """
    InMemoryRemoteStore that counts calls and can fail or hold them.

    fail("list_expenses", times=2) makes the next two calls raise
    (TransientFetchError for reads, MutationError for writes).
    hold("insert_expense") parks calls until release("insert_expense").
    """

    def __init__(self, current_user_id: Optional[str] = USER_ID):
        super().__init__(current_user_id=current_user_id)
        self.calls: Counter = Counter()
        self._failures: dict[str, int] = {}
        self._gates: dict[str, asyncio.Event] = {}

    def fail(self, method: str, times: int = 1) -> None:
        self._failures[method] = times

    def hold(self, method: str) -> None:
        self._gates[method] = asyncio.Event()

    def release(self, method: str) -> None:
        gate = self._gates.pop(method, None)
        if gate is not None:
            gate.set()

    async def _enter(self, method: str) -> None:
        self.calls[method] += 1
        gate = self._gates.get(method)
        if gate is not None:
            await gate.wait()
        remaining = self._failures.get(method, 0)
        if remaining:
            self._failures[method] = remaining - 1
            error = TransientFetchError if method in READS else MutationError
            raise error(f"{method} failed")

    async def list_memberships(self, user_id):
        await self._enter("list_memberships")
        return await super().list_memberships(user_id)

    async def list_groups(self, group_ids):
        await self._enter("list_groups")
        return await super().list_groups(group_ids)

    async def insert_group(self, owner_id):
        await self._enter("insert_group")
        return await super().insert_group(owner_id)

    async def insert_membership(self, group_id, user_id, role):
        await self._enter("insert_membership")
        return await super().insert_membership(group_id, user_id, role)

    async def delete_group(self, group_id):
        await self._enter("delete_group")
        return await super().delete_group(group_id)

    async def list_budgets_with_expenses(self, group_ids):
        await self._enter("list_budgets_with_expenses")
        return await super().list_budgets_with_expenses(group_ids)

    async def insert_budget(self, group_id, name, amount):
        await self._enter("insert_budget")
        return await super().insert_budget(group_id, name, amount)

    async def update_budget(self, budget_id, fields):
        await self._enter("update_budget")
        return await super().update_budget(budget_id, fields)

    async def delete_budget(self, budget_id):
        await self._enter("delete_budget")
        return await super().delete_budget(budget_id)

    async def list_expenses(self, budget_id):
        await self._enter("list_expenses")
        return await super().list_expenses(budget_id)

    async def insert_expense(self, budget_id, description, amount, expense_date, expense_id=None):
        await self._enter("insert_expense")
        return await super().insert_expense(
            budget_id, description, amount, expense_date, expense_id=expense_id
        )

    async def update_expense(self, expense_id, fields):
        await self._enter("update_expense")
        return await super().update_expense(expense_id, fields)

    async def delete_expense(self, expense_id):
        await self._enter("delete_expense")
        return await super().delete_expense(expense_id)

    async def delete_expenses_for_budget(self, budget_id):
        await self._enter("delete_expenses_for_budget")
        return await super().delete_expenses_for_budget(budget_id)


class Seeder:
    """Writes fixture rows straight into a store, bypassing the sync core."""

    def __init__(self, remote: InMemoryRemoteStore):
        self.remote = remote

    async def group(self, user_id: str = USER_ID, role: MembershipRole = MembershipRole.OWNER):
        group = await InMemoryRemoteStore.insert_group(self.remote, user_id)
        await InMemoryRemoteStore.insert_membership(self.remote, group.id, user_id, role)
        return group

    async def budget(self, group_id: str, name: str, amount) -> Budget:
        return await InMemoryRemoteStore.insert_budget(
            self.remote, group_id, name, Decimal(str(amount))
        )

    async def expense(
        self,
        budget_id: str,
        description: str,
        amount,
        expense_date: date = date(2024, 5, 1),
    ) -> Expense:
        return await InMemoryRemoteStore.insert_expense(
            self.remote, budget_id, description, Decimal(str(amount)), expense_date
        )


@pytest.fixture
def remote() -> FlakyRemoteStore:
    return FlakyRemoteStore()


@pytest.fixture
def seed(remote) -> Seeder:
    return Seeder(remote)


@pytest.fixture
def sync_settings() -> SyncSettings:
    """Three retries, no waiting."""
    return SyncSettings(max_retries=3, retry_base_delay_seconds=0)


@pytest.fixture
def settings(monkeypatch) -> Settings:
    """Full settings with the same no-wait retry policy, read from the environment."""
    monkeypatch.setenv("BUDGETSYNC_MAX_RETRIES", "3")
    monkeypatch.setenv("BUDGETSYNC_RETRY_BASE_DELAY_SECONDS", "0")
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    return Settings()


@pytest.fixture
def audit() -> AuditLogger:
    return AuditLogger()
