"""
Versioned budget state.

DESIGN DECISION: The local mirror of budgets is a single immutable
BudgetState snapshot owned by one BudgetStateContainer. Every write
produces a new snapshot with version + 1, so:
- rollback is "put the old snapshot back" when nothing else committed
  in between
- a rollback can tell whether something else DID commit in between
  (the version moved) and repair only its own entity instead
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict

from budgetsync.models.records import BudgetView


class BudgetState(BaseModel):
    """One immutable snapshot of the local budget mirror."""
    model_config = ConfigDict(frozen=True)

    version: int = 0
    budgets: tuple[BudgetView, ...] = ()
    error: Optional[str] = None

    def find_budget(self, budget_id: str) -> Optional[BudgetView]:
        for budget in self.budgets:
            if budget.id == budget_id:
                return budget
        return None

    def find_expense_owner(self, expense_id: str) -> Optional[BudgetView]:
        """The budget currently holding the expense, if any."""
        for budget in self.budgets:
            if budget.has_expense(expense_id):
                return budget
        return None


_UNCHANGED = object()


class BudgetStateContainer:
    """Owner of the current BudgetState. The only place state is written."""

    def __init__(self):
        self._state = BudgetState()

    @property
    def snapshot(self) -> BudgetState:
        return self._state

    @property
    def version(self) -> int:
        return self._state.version

    def commit(self, budgets=_UNCHANGED, error=_UNCHANGED) -> BudgetState:
        """Publish a new snapshot; omitted parts carry over."""
        self._state = BudgetState(
            version=self._state.version + 1,
            budgets=self._state.budgets if budgets is _UNCHANGED else tuple(budgets),
            error=self._state.error if error is _UNCHANGED else error,
        )
        return self._state

    def replace_budget(self, view: BudgetView, error=_UNCHANGED) -> BudgetState:
        """Swap in a new version of one budget, keeping its position."""
        budgets = tuple(view if b.id == view.id else b for b in self._state.budgets)
        return self.commit(budgets=budgets, error=error)

    def restore(self, previous: BudgetState, error: Optional[str] = None) -> BudgetState:
        """Put an earlier snapshot's budgets back (as a new version)."""
        return self.commit(budgets=previous.budgets, error=error)
