"""
Sync Core Package

The three stateful components of the client:
- GroupDirectory: which groups the user sees, and with which role
- BudgetStore: budgets of those groups with their expenses
- ExpenseStream: live expense list of the budget on screen
"""

from budgetsync.sync.budgets import BudgetStore
from budgetsync.sync.expenses import ExpenseStream, PendingInsert
from budgetsync.sync.groups import GroupDirectory
from budgetsync.sync.retry import describe_retry, linear_backoff
from budgetsync.sync.state import BudgetState, BudgetStateContainer
from budgetsync.sync.tasks import TaskSlot

__all__ = [
    # Components
    "BudgetStore",
    "ExpenseStream",
    "GroupDirectory",
    # State
    "BudgetState",
    "BudgetStateContainer",
    "PendingInsert",
    # Plumbing
    "TaskSlot",
    "describe_retry",
    "linear_backoff",
]
