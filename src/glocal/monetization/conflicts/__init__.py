"""Write conflict detection and resolution."""

from glocal.monetization.conflicts.models import (
    ConflictResolution,
    ConflictStats,
    ConflictStatus,
    ConflictType,
    ResolutionStrategy,
)

__all__ = [
    "ConflictResolution",
    "ConflictStats",
    "ConflictStatus",
    "ConflictType",
    "ResolutionStrategy",
]
