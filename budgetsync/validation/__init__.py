"""Validation package."""

from budgetsync.validation.validator import ExtractionValidator

__all__ = ["ExtractionValidator"]
