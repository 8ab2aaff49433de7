"""Queue data models."""
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional

from consultation_queue.errors import ValidationError


class QueueType(str, Enum):
    """Office whose queue an entry belongs to."""

    OVERSEER = "overseer"
    PASTOR = "pastor"

    @classmethod
    def parse(cls, value) -> "QueueType":
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(f"Unknown queue type: {value}", field="queue_type") from None


class QueueStatus(str, Enum):
    WAITING = "waiting"
    APPROVED = "approved"
    DECLINED = "declined"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# One-way transitions; anything not listed is rejected
ALLOWED_TRANSITIONS = {
    QueueStatus.WAITING: {QueueStatus.APPROVED, QueueStatus.DECLINED},
    QueueStatus.APPROVED: {QueueStatus.COMPLETED, QueueStatus.CANCELLED},
    QueueStatus.DECLINED: set(),
    QueueStatus.COMPLETED: set(),
    QueueStatus.CANCELLED: set(),
}

# Statuses whose position is still a live rank
RANKED_STATUSES = (QueueStatus.WAITING, QueueStatus.APPROVED)


def can_transition(current: QueueStatus, target: QueueStatus) -> bool:
    return QueueStatus(target) in ALLOWED_TRANSITIONS[QueueStatus(current)]


@dataclass
class QueueEntry:
    """A single consultation request, mirroring a queue_entries row."""

    id: Any  # Assigned by the store
    first_name: str
    last_name: str
    email: str
    reason: str
    queue_type: QueueType
    status: QueueStatus
    position: int
    created_at: datetime
    updated_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    declined_at: Optional[datetime] = None
    admin_notes: Optional[str] = None
    decline_reason: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "QueueEntry":
        """Build an entry from a database row (RealDictCursor dict)."""
        return cls(
            id=row["id"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            email=row["email"],
            reason=row["reason"],
            queue_type=QueueType(row["queue_type"]),
            status=QueueStatus(row["status"]),
            position=row["position"],
            created_at=row["created_at"],
            updated_at=row.get("updated_at"),
            approved_at=row.get("approved_at"),
            declined_at=row.get("declined_at"),
            admin_notes=row.get("admin_notes"),
            decline_reason=row.get("decline_reason"),
        )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_ranked(self) -> bool:
        """Position only means something while waiting or approved."""
        return self.status in RANKED_STATUSES

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["queue_type"] = self.queue_type.value
        data["status"] = self.status.value
        return data
