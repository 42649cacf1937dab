"""Domain entity representing an audit entry for a retention policy run."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


@dataclass
class RetentionAuditEntry:
    """Captured outcome of one scheduled or manual retention run."""

    id: int | None
    policy: str
    results: dict[str, Any] = field(default_factory=dict)
    dry_run: bool = False
    automated: bool = True
    created_at: datetime | None = None


__all__ = ["RetentionAuditEntry"]
