"""
Extraction Models

The extraction service turns free text or a receipt photo into candidate
transactions. Its output is PROPOSED data: it is validated against these
models and the list of budgets the user may post to before anything is
written.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from budgetsync.models.records import to_money


class CandidateBudget(BaseModel):
    """A budget the extraction service may assign transactions to."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str


class ExtractedTransaction(BaseModel):
    """One validated transaction proposed by the extraction service."""
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    description: str = Field(..., min_length=1, max_length=500)
    amount: Decimal = Field(..., gt=0)
    expense_date: date
    budget_id: str = Field(..., min_length=1)
    budget_name: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def quantize_amount(cls, v):
        return to_money(v)


class ExtractionResult(BaseModel):
    """All transactions found in one extraction request."""

    extraction_id: UUID = Field(default_factory=uuid4)
    extracted_at: datetime = Field(default_factory=datetime.utcnow)
    transactions: list[ExtractedTransaction] = Field(default_factory=list)
    raw_response: Optional[str] = Field(
        default=None,
        description="Raw model output for debugging"
    )

    @property
    def total_amount(self) -> Decimal:
        return sum((t.amount for t in self.transactions), Decimal("0.00"))


class ValidationIssue(BaseModel):
    """A single problem found in an extraction response."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_type', 'unknown_budget')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        default="error",
        pattern="^(error|warning)$",
    )
    transaction_index: Optional[int] = Field(
        default=None,
        description="Index of the offending transaction, if any"
    )


class ValidationResult(BaseModel):
    """
    Outcome of validating one extraction response.

    Stage 1: structure (object with a transactions array)
    Stage 2: each transaction's fields
    """

    structure_valid: bool
    transactions_valid: bool
    issues: list[ValidationIssue] = Field(default_factory=list)
    transactions: list[ExtractedTransaction] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return self.structure_valid and self.transactions_valid

    @property
    def has_errors(self) -> bool:
        return any(issue.severity == "error" for issue in self.issues)

    @property
    def error_count(self) -> int:
        return sum(1 for issue in self.issues if issue.severity == "error")

    def first_error_message(self) -> Optional[str]:
        for issue in self.issues:
            if issue.severity == "error":
                return issue.message
        return None
