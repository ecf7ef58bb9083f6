"""
Two-Stage Validation of Extraction Output

STAGE 1 - STRUCTURE:
- The response is a JSON object
- It has a non-empty "transactions" array

STAGE 2 - TRANSACTIONS:
- Description present
- Amount is a real number (a numeric string is NOT accepted) and positive
- Date is a real calendar date in YYYY-MM-DD form
- Budget id is one of the candidate budgets

Stage 2 is skipped when stage 1 fails.

IMPORTANT: Validation NEVER coerces or fixes values. "3.50" is rejected,
not converted, because the model was told amounts are numbers and a string
means it did not follow the format.
"""

import math
import re
from datetime import date
from decimal import Decimal
from typing import Any, Optional

from budgetsync.errors import ExtractionValidationError
from budgetsync.models.extraction import (
    CandidateBudget,
    ExtractedTransaction,
    ValidationIssue,
    ValidationResult,
)


DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# The prompt asks for capitalised keys; snake/camel case are accepted too.
FIELD_ALIASES = {
    "description": ("Description", "description"),
    "amount": ("Amount", "amount"),
    "date": ("Date", "date", "expense_date"),
    "budget_name": ("Budget", "budget", "budget_name"),
    "budget_id": ("BudgetID", "budgetId", "budget_id"),
}


def _lookup(raw: dict, field: str) -> Any:
    for key in FIELD_ALIASES[field]:
        if key in raw:
            return raw[key]
    return None


def _is_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, Decimal)):
        return True
    if isinstance(value, float):
        return math.isfinite(value)
    return False


class ExtractionValidator:
    """Validates the extraction service's response against the user's budgets."""

    def _validate_structure(self, payload: Any) -> tuple[bool, list[ValidationIssue]]:
        """Stage 1. Returns (is_valid, issues)."""
        issues = []

        if not isinstance(payload, dict):
            issues.append(ValidationIssue(
                field="response",
                issue_type="invalid_type",
                message="Invalid response structure: expected an object",
            ))
            return False, issues

        transactions = payload.get("transactions")
        if not isinstance(transactions, list):
            issues.append(ValidationIssue(
                field="transactions",
                issue_type="missing",
                message="Invalid response structure: missing transactions array",
            ))
        elif not transactions:
            issues.append(ValidationIssue(
                field="transactions",
                issue_type="empty",
                message="No transactions identified",
            ))

        return not issues, issues

    def _validate_transaction(
        self,
        index: int,
        raw: Any,
        candidates: dict[str, CandidateBudget],
    ) -> tuple[Optional[ExtractedTransaction], list[ValidationIssue]]:
        """Stage 2 for one transaction. Returns (transaction or None, issues)."""
        issues = []

        def error(field: str, issue_type: str, text: str) -> None:
            issues.append(ValidationIssue(
                field=field,
                issue_type=issue_type,
                message=f"Transaction {index}: {text}",
                transaction_index=index,
            ))

        if not isinstance(raw, dict):
            error("transaction", "invalid_type", "Expected an object")
            return None, issues

        description = _lookup(raw, "description")
        if not isinstance(description, str) or not description.strip():
            error("description", "missing", "Missing Description")

        amount = _lookup(raw, "amount")
        if not _is_number(amount):
            error("amount", "invalid_type", "Amount must be a number")
        elif amount <= 0:
            error("amount", "invalid_value", "Amount must be greater than zero")

        raw_date = _lookup(raw, "date")
        expense_date = None
        if not isinstance(raw_date, str) or not DATE_PATTERN.match(raw_date):
            error("date", "invalid_format", "Invalid Date format")
        else:
            try:
                expense_date = date.fromisoformat(raw_date)
            except ValueError:
                error("date", "invalid_value", f"Invalid Date {raw_date}")

        budget_id = _lookup(raw, "budget_id")
        if not budget_id:
            error("budget_id", "missing", "Missing BudgetID")
        elif str(budget_id) not in candidates:
            error("budget_id", "unknown_budget", "Invalid BudgetID")

        budget_name = _lookup(raw, "budget_name")
        if not budget_name and str(budget_id) in candidates:
            issues.append(ValidationIssue(
                field="budget_name",
                issue_type="missing",
                message=f"Transaction {index}: Missing Budget name, using the budget's own name",
                severity="warning",
                transaction_index=index,
            ))
            budget_name = candidates[str(budget_id)].name

        if any(issue.severity == "error" for issue in issues):
            return None, issues

        transaction = ExtractedTransaction(
            description=description,
            amount=amount,
            expense_date=expense_date,
            budget_id=str(budget_id),
            budget_name=budget_name,
        )
        return transaction, issues

    def validate(
        self,
        payload: Any,
        candidates: list[CandidateBudget],
    ) -> ValidationResult:
        """
        Run both validation stages.

        Args:
            payload: Parsed JSON returned by the extraction service
            candidates: Budgets the transactions may be assigned to

        Returns:
            ValidationResult with every issue found and, when valid,
            the parsed transactions in input order
        """
        structure_valid, issues = self._validate_structure(payload)
        if not structure_valid:
            return ValidationResult(
                structure_valid=False,
                transactions_valid=False,
                issues=issues,
            )

        by_id = {c.id: c for c in candidates}
        transactions = []
        for index, raw in enumerate(payload["transactions"]):
            transaction, tx_issues = self._validate_transaction(index, raw, by_id)
            issues.extend(tx_issues)
            if transaction is not None:
                transactions.append(transaction)

        transactions_valid = not any(issue.severity == "error" for issue in issues)
        return ValidationResult(
            structure_valid=True,
            transactions_valid=transactions_valid,
            issues=issues,
            transactions=transactions if transactions_valid else [],
        )

    def validate_or_raise(
        self,
        payload: Any,
        candidates: list[CandidateBudget],
    ) -> list[ExtractedTransaction]:
        """
        Validate and return the transactions.

        Raises:
            ExtractionValidationError: Carrying the first error as its
                message and every issue in .issues
        """
        result = self.validate(payload, candidates)
        if not result.is_valid:
            raise ExtractionValidationError(
                result.first_error_message(),
                issues=result.issues,
            )
        return result.transactions
