"""
Conflict resolution models.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ConflictType(str, Enum):
    """Kind of write that collided."""

    UPDATE = "update"
    DELETE = "delete"
    INSERT = "insert"


class ResolutionStrategy(str, Enum):
    """How a conflict is adjudicated."""

    LAST_WRITE_WINS = "last_write_wins"
    FIRST_WRITE_WINS = "first_write_wins"
    MERGE = "merge"
    MANUAL = "manual"


class ConflictStatus(str, Enum):
    """Conflict lifecycle. pending -> resolved | escalated; escalated -> resolved."""

    PENDING = "pending"
    RESOLVED = "resolved"
    ESCALATED = "escalated"


class ConflictResolution(BaseModel):
    """One detected conflict and its outcome."""

    model_config = ConfigDict(validate_assignment=True)

    id: str
    table_name: str
    record_id: str
    conflict_type: ConflictType
    conflict_data: dict[str, Any] = Field(default_factory=dict)
    resolution_strategy: ResolutionStrategy
    status: ConflictStatus = ConflictStatus.PENDING
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    resolution_data: dict[str, Any] | None = None
    escalation_reason: str | None = None
    escalated_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_resolved(self) -> bool:
        return self.status == ConflictStatus.RESOLVED


class ConflictStats(BaseModel):
    """Conflict counts and mean resolution latency over a window."""

    total: int = 0
    resolved: int = 0
    pending: int = 0
    escalated: int = 0
    avg_resolution_ms: float = 0.0
