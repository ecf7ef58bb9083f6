"""
Error Taxonomy

Every error the sync core surfaces carries a user_message the UI can show
as-is. The class decides the handling:

- AuthenticationError / AuthorizationError: fatal to the flow, never retried
- TransientFetchError: a failed read, retried with backoff by the loaders
- LoadError: what a loader raises once retries are exhausted
- MutationError: a failed write, rolled back and surfaced immediately
- ExtractionValidationError: malformed extraction output, no state touched
"""

from typing import Optional


class SyncError(Exception):
    """Base exception for the sync core."""

    default_message = "Something went wrong. Please try again."

    def __init__(self, message: Optional[str] = None):
        self.user_message = message or self.default_message
        super().__init__(self.user_message)


class AuthenticationError(SyncError):
    """No signed-in user."""
    default_message = "User not authenticated"


class AuthorizationError(SyncError):
    """The user lacks the role the operation needs."""
    default_message = "You must be an owner of a group to create budgets"


class NotFoundError(SyncError):
    """A budget or expense is not in the local mirror."""
    default_message = "Not found"


class NoBudgetSelectedError(SyncError):
    """An expense was added with no target budget and none open."""
    default_message = "No budget selected"


# =============================================================================
# REMOTE STORE ERRORS
# =============================================================================

class RemoteStoreError(SyncError):
    """Base exception for remote store operations."""
    default_message = "The server could not complete the request"


class TransientFetchError(RemoteStoreError):
    """A read failed (network or server error). Safe to retry."""
    default_message = "Could not reach the server"


class MutationError(RemoteStoreError):
    """A write failed. Never retried."""
    default_message = "The change could not be saved"


class RecordNotFoundError(MutationError):
    """A write targeted a row the remote store does not have."""
    default_message = "Record not found"


class SubscriptionError(RemoteStoreError):
    """The change channel refused or dropped the subscription."""
    default_message = "Live updates are unavailable"


# =============================================================================
# TERMINAL LOAD ERRORS
# =============================================================================

class LoadError(SyncError):
    """A fetch failed on every attempt."""

    def __init__(self, message: Optional[str] = None, attempts: int = 0):
        self.attempts = attempts
        super().__init__(message)


class GroupLoadError(LoadError):
    default_message = "Unable to load groups. Please try again later."


class BudgetLoadError(LoadError):
    default_message = "Unable to load budgets. Please try again later."


# =============================================================================
# EXTRACTION ERRORS
# =============================================================================

class ExtractionError(SyncError):
    """Base exception for the extraction service."""
    default_message = "Could not read any expenses from that input"


class ExtractionServiceError(ExtractionError):
    """The extraction service is unavailable or returned nothing."""
    pass


class ExtractionValidationError(ExtractionError):
    """The extraction service answered with data that fails validation."""

    def __init__(self, message: Optional[str] = None, issues: Optional[list] = None):
        self.issues = issues or []
        super().__init__(message)
