"""
Main Orchestrator for Budget Sync

Ties the sync components together into the flows a client screen runs:
1. Start: sign-in check → resolve groups → load budgets
2. Browse: open a budget → live expense list
3. Add expense: form input or extracted from text / a receipt photo
   → stream insert → fold into the budget's total

DESIGN DECISION: The orchestrator owns no state of its own.
Groups, budgets and expenses live in their components; this module only
sequences calls and builds the summaries the UI shows.

Extraction output is never written as-is: it passes the validator first,
and one bad transaction rejects the whole batch before any write.
"""

from datetime import date
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

import structlog
from pydantic import BaseModel, ConfigDict

from budgetsync.audit import (
    AuditLogger,
    configure_logging,
    create_correlation_id,
    get_audit_logger,
)
from budgetsync.config import Settings, get_settings
from budgetsync.errors import ExtractionError, ExtractionValidationError, NotFoundError
from budgetsync.models import (
    AuditEventBuilder,
    BudgetView,
    CandidateBudget,
    Expense,
)
from budgetsync.services.extraction import ExtractionSource, GeminiExtractionService
from budgetsync.services.remote import InMemoryRemoteStore, RemoteStore
from budgetsync.sync import BudgetStore, ExpenseStream, GroupDirectory


logger = structlog.get_logger(__name__)


class ExpenseAdded(BaseModel):
    """What the user sees after an expense is saved."""
    model_config = ConfigDict(frozen=True)

    expense: Expense
    budget_name: str
    remaining: Decimal

    @property
    def message(self) -> str:
        return (
            f"{self.expense.description} for {self.expense.amount:.2f} "
            f"was added to {self.budget_name}, {self.remaining:.2f} remaining"
        )


class BudgetSession:
    """
    One signed-in user's view of their shared budgets.

    Flow:
    1. start() → groups resolved (default group created on first use),
       budgets loaded with retries
    2. open_budget() → expense list subscribed and fetched
    3. add_expense() / add_from_input() → written, shown, totals updated
    4. close() → channel released, background loads cancelled
    """

    def __init__(
        self,
        remote: RemoteStore,
        extraction_service: Optional[GeminiExtractionService] = None,
        settings: Optional[Settings] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        settings = settings or get_settings()
        self._remote = remote
        self._audit = audit_logger or get_audit_logger()
        self._extraction = extraction_service

        self.groups = GroupDirectory(remote, settings=settings.sync, audit_logger=self._audit)
        self.budgets = BudgetStore(remote, settings=settings.sync, audit_logger=self._audit)
        self.expenses = ExpenseStream(remote, audit_logger=self._audit)

    async def start(self, correlation_id: Optional[UUID] = None) -> tuple[BudgetView, ...]:
        """
        Resolve the user's groups and load their budgets.

        Raises:
            AuthenticationError: Nobody is signed in
            GroupLoadError / BudgetLoadError: Fetching failed on every attempt
        """
        correlation_id = correlation_id or create_correlation_id()
        user = await self._remote.get_current_user()
        groups = await self.groups.resolve_groups(user, correlation_id=correlation_id)
        return await self.budgets.load(groups, correlation_id=correlation_id)

    async def open_budget(self, budget_id: str):
        """Show a budget's expenses, live."""
        if self.budgets.get_budget(budget_id) is None:
            raise NotFoundError("Budget not found")
        return await self.expenses.switch(budget_id)

    def candidate_budgets(self) -> list[CandidateBudget]:
        """Budgets extracted transactions may be assigned to."""
        return [CandidateBudget(id=b.id, name=b.name) for b in self.budgets.budgets]

    async def add_expense(
        self,
        budget_id: str,
        description: str,
        amount,
        expense_date: Union[date, str],
        correlation_id: Optional[UUID] = None,
    ) -> ExpenseAdded:
        """
        Add one expense and report the budget's remaining amount.

        Raises:
            NotFoundError: The budget is not loaded
            MutationError: The insert failed (nothing changed locally)
        """
        budget = self.budgets.get_budget(budget_id)
        if budget is None:
            raise NotFoundError("Budget not found")

        correlation_id = correlation_id or create_correlation_id()
        expense = await self.expenses.add_expense(
            description,
            amount,
            expense_date,
            target_budget_id=budget_id,
            correlation_id=correlation_id,
        )
        self.budgets.merge_expense(expense)

        updated = self.budgets.get_budget(budget_id) or budget
        return ExpenseAdded(expense=expense, budget_name=updated.name, remaining=updated.remaining)

    async def add_from_input(
        self,
        source: ExtractionSource,
        correlation_id: Optional[UUID] = None,
    ) -> list[ExpenseAdded]:
        """
        Extract transactions from text or a receipt image and add them all.

        Transactions are added in the order the extraction returned them.
        A failed insert stops the batch; the ones before it stay saved.

        Raises:
            ExtractionServiceError: No extraction service, or it failed
            ExtractionValidationError: The extraction output was rejected
            MutationError: An insert failed
        """
        correlation_id = correlation_id or create_correlation_id()
        service = self._extraction or GeminiExtractionService()

        try:
            result = await service.extract(source, self.candidate_budgets())
        except ExtractionValidationError as e:
            issues = [i.model_dump() for i in e.issues]
            self._audit.log(AuditEventBuilder.extraction_rejected(
                issues, e.user_message, correlation_id
            ))
            raise
        except ExtractionError as e:
            self._audit.log(AuditEventBuilder.system_error(
                "extraction", e.user_message, {}, correlation_id
            ))
            raise

        self._audit.log(AuditEventBuilder.extraction_completed(
            result.extraction_id, len(result.transactions), correlation_id
        ))

        added = []
        for transaction in result.transactions:
            added.append(await self.add_expense(
                transaction.budget_id,
                transaction.description,
                transaction.amount,
                transaction.expense_date,
                correlation_id=correlation_id,
            ))
        logger.info(
            "extracted_expenses_added",
            count=len(added),
            correlation_id=str(correlation_id),
        )
        return added

    async def close(self) -> None:
        await self.expenses.close()
        await self.budgets.close()
        await self.groups.close()


def create_session(
    remote: Optional[RemoteStore] = None,
    user_id: Optional[str] = None,
) -> BudgetSession:
    """
    Factory function to create a session.

    Args:
        remote: Remote store to sync against. Defaults to an in-memory
                store, signed in as user_id if given.

    Returns:
        A BudgetSession with an extraction service if Gemini is configured
    """
    settings = get_settings()
    configure_logging(settings.app.log_level)
    remote = remote or InMemoryRemoteStore(current_user_id=user_id)
    extraction = GeminiExtractionService(settings.gemini) if settings.gemini.is_configured else None
    return BudgetSession(remote, extraction_service=extraction, settings=settings)
