"""
Change Notification Models

The remote store pushes one ChangeEvent per row change on a subscribed
channel. Events carry the raw row as a dict; consumers decide which
record type to parse it into.

DESIGN DECISION: Events arrive in network order only. Nothing here
promises that an event is seen before or after the direct write that
caused it.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class Table(str, Enum):
    """Remote collections."""
    GROUPS = "groups"
    GROUP_MEMBERS = "group_members"
    BUDGETS = "budgets"
    EXPENSES = "expenses"


class ChangeEventType(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class SubscriptionState(str, Enum):
    """
    Lifecycle of one change-channel subscription.

    unsubscribed -> subscribing -> active -> (error | unsubscribed)
    """
    UNSUBSCRIBED = "unsubscribed"
    SUBSCRIBING = "subscribing"
    ACTIVE = "active"
    ERROR = "error"


class ChangeEvent(BaseModel):
    """A single row change pushed by the remote store."""
    model_config = ConfigDict(frozen=True)

    event_type: ChangeEventType
    table: Table
    row: dict[str, Any] = Field(
        default_factory=dict,
        description="New row for insert/update, removed row for delete"
    )
    old_row: Optional[dict[str, Any]] = None
    received_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def row_id(self) -> Optional[str]:
        value = self.row.get("id")
        return str(value) if value is not None else None
