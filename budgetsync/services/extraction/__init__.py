"""Expense extraction services package."""

from budgetsync.services.extraction.gemini_service import (
    ExtractionSource,
    GeminiExtractionService,
)

__all__ = [
    "ExtractionSource",
    "GeminiExtractionService",
]
