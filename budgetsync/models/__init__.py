"""
Data Models Package

All data flowing through the sync core is one of these Pydantic models.
"""

from budgetsync.models.records import (
    Budget,
    BudgetUpdate,
    BudgetView,
    BudgetWithExpenses,
    CurrentUser,
    Expense,
    ExpenseUpdate,
    Group,
    GroupMembershipView,
    Membership,
    MembershipRole,
    sort_budgets,
    sort_expenses,
    to_money,
)
from budgetsync.models.changes import (
    ChangeEvent,
    ChangeEventType,
    SubscriptionState,
    Table,
)
from budgetsync.models.extraction import (
    CandidateBudget,
    ExtractedTransaction,
    ExtractionResult,
    ValidationIssue,
    ValidationResult,
)
from budgetsync.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Records
    "Budget",
    "BudgetUpdate",
    "BudgetView",
    "BudgetWithExpenses",
    "CurrentUser",
    "Expense",
    "ExpenseUpdate",
    "Group",
    "GroupMembershipView",
    "Membership",
    "MembershipRole",
    "sort_budgets",
    "sort_expenses",
    "to_money",
    # Change stream
    "ChangeEvent",
    "ChangeEventType",
    "SubscriptionState",
    "Table",
    # Extraction
    "CandidateBudget",
    "ExtractedTransaction",
    "ExtractionResult",
    "ValidationIssue",
    "ValidationResult",
    # Audit
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
