"""Queue access layer: submissions, admin decisions and position bookkeeping."""
import threading
from datetime import datetime, timedelta, timezone, time, date
from typing import List, Optional, Dict, Any, Callable, Tuple

from consultation_queue.db import Database
from consultation_queue.errors import EntryNotFoundError, InvalidTransitionError, ValidationError
from consultation_queue.logging_conf import logger
from consultation_queue.notifications import (
    EmailDispatcher,
    ApprovalNotification,
    DeclineNotification,
    Deferred,
    DispatchResult,
    Notification,
)
from consultation_queue.queue.models import QueueEntry, QueueStatus, QueueType, can_transition
from consultation_queue.queue.offices import OFFICES, local_time, office_timezone
from consultation_queue.validators import validate_required_fields, validate_email, validate_reason


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class QueueService:
    """CRUD and position management over the queue_entries table."""

    def __init__(self, db: Database, dispatcher: EmailDispatcher, clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.dispatcher = dispatcher
        self.clock = clock
        # One writer at a time per queue for position assignment and recalculation
        self._locks = {queue_type: threading.RLock() for queue_type in QueueType}

    def position_lock(self, queue_type) -> threading.RLock:
        return self._locks[QueueType.parse(queue_type)]

    # Submissions

    def add_to_queue(self, first_name: str, last_name: str, email: str, reason: str, queue_type) -> QueueEntry:
        """
        Add a requester to the waiting list of an office.

        Raises:
            ValidationError: a field is blank, the email is malformed or the
                queue type is unknown. Nothing is written in that case.
            StoreError: the store rejected or could not take the insert.
        """
        validate_required_fields(
            {"first_name": first_name, "last_name": last_name, "email": email, "reason": reason},
            ["first_name", "last_name", "email", "reason"],
        )
        email = validate_email(email)
        queue_type = QueueType.parse(queue_type)

        with self.position_lock(queue_type):
            row = self.db.insert_waiting_entry(
                first_name=first_name.strip(),
                last_name=last_name.strip(),
                email=email,
                reason=reason.strip(),
                queue_type=queue_type.value,
                created_at=self.clock(),
            )
        entry = QueueEntry.from_row(row)
        logger.info(f"{entry.full_name} joined the {queue_type.value} queue at position {entry.position}")
        return entry

    def next_position(self, queue_type) -> int:
        current = self.db.max_waiting_position(QueueType.parse(queue_type).value)
        return current + 1 if current else 1

    # Reads

    def get_queue_count(self, queue_type) -> int:
        return self.db.count_entries(QueueType.parse(queue_type).value, QueueStatus.WAITING.value)

    def get_queue_entries(self, queue_type) -> List[QueueEntry]:
        """Waiting entries of one office, in queue order."""
        return self._fetch(QueueType.parse(queue_type), [QueueStatus.WAITING], "position")

    def get_active_entries(self, queue_type) -> List[QueueEntry]:
        """Waiting and approved entries of one office."""
        return self._fetch(QueueType.parse(queue_type), [QueueStatus.WAITING, QueueStatus.APPROVED], "position")

    def get_approved_entries(self, queue_type) -> List[QueueEntry]:
        """Approved entries of one office, oldest first."""
        return self._fetch(QueueType.parse(queue_type), [QueueStatus.APPROVED], "created_at")

    def get_all_queue_entries(self) -> List[QueueEntry]:
        return self._fetch(None, None, "-created_at")

    def get_pending_queue_entries(self) -> List[QueueEntry]:
        """Waiting entries of every office, oldest first."""
        return self._fetch(None, [QueueStatus.WAITING], "created_at")

    def get_queue_entry(self, entry_id) -> QueueEntry:
        row = self.db.get_entry(entry_id)
        if row is None:
            raise EntryNotFoundError(entry_id)
        return QueueEntry.from_row(row)

    def get_queue_stats(self, today: Optional[date] = None) -> Dict[str, Any]:
        """Waiting counts per office, today's completed consultations and office hours."""
        tz = office_timezone()
        now = self.clock()
        today = today or local_time(now, tz).date()
        # "Today" is the office's calendar day
        start = datetime.combine(today, time.min, tzinfo=tz)
        stats: Dict[str, Any] = {
            "today_completed": self.db.count_updated_between(
                QueueStatus.COMPLETED.value, start, start + timedelta(days=1)
            ),
        }
        for queue_type, office in OFFICES.items():
            stats[queue_type.value] = {
                "title": office.title,
                "waiting": self.get_queue_count(queue_type),
                "max_persons": office.max_persons,
                "open": office.is_open(now, tz),
            }
        return stats

    # Status changes

    def update_queue_status(self, entry_id, status) -> QueueEntry:
        status = QueueStatus(status)
        entry = self.get_queue_entry(entry_id)
        self._check_transition(entry, status)
        return self._update(entry_id, {"status": status.value, "updated_at": self.clock()})

    def approve_queue_entry(self, entry_id, admin_notes: str = "", queue_position: Optional[int] = None) -> QueueEntry:
        """
        Approve a waiting entry and email the requester.

        The approval email reports `queue_position` when given, otherwise the
        entry's stored position. Email problems are logged and never undo the
        approval.
        """
        entry = self.get_queue_entry(entry_id)
        self._check_transition(entry, QueueStatus.APPROVED)
        now = self.clock()
        updated = self._update(entry_id, {
            "status": QueueStatus.APPROVED.value,
            "admin_notes": admin_notes or "",
            "approved_at": now,
            "updated_at": now,
        })
        logger.info(f"Approved {updated.queue_type.value} entry {entry_id} ({updated.full_name})")

        self.notify(lambda: ApprovalNotification(
            updated.email,
            updated.first_name,
            updated.last_name,
            position=queue_position or updated.position,
            note=updated.reason or admin_notes,
        ))
        return updated

    def decline_queue_entry(self, entry_id, reason: str) -> QueueEntry:
        """Decline a waiting entry and email the requester the reason."""
        reason = validate_reason(reason, field="decline_reason")
        entry = self.get_queue_entry(entry_id)
        self._check_transition(entry, QueueStatus.DECLINED)
        now = self.clock()
        updated = self._update(entry_id, {
            "status": QueueStatus.DECLINED.value,
            "decline_reason": reason,
            "declined_at": now,
            "updated_at": now,
        })
        logger.info(f"Declined {updated.queue_type.value} entry {entry_id} ({updated.full_name})")

        self.notify(lambda: DeclineNotification(
            updated.email,
            updated.first_name,
            updated.last_name,
            decline_reason=reason,
        ))
        return updated

    # Positions

    def reassign_approved_positions(self, queue_type) -> Tuple[List[Tuple[QueueEntry, int]], int]:
        """
        Renumber approved entries 1..N by created_at.

        Returns:
            ([(entry with its new position, previous position), ...] for
            every row that moved, total number of approved entries)
        """
        queue_type = QueueType.parse(queue_type)
        with self.position_lock(queue_type):
            entries = self.get_approved_entries(queue_type)
            moved = []
            for index, entry in enumerate(entries):
                new_position = index + 1
                if entry.position != new_position:
                    previous = entry.position
                    entry.position = new_position
                    moved.append((entry, previous))
            self.db.update_positions([(entry.id, entry.position) for entry, _ in moved])
        return moved, len(entries)

    def recalculate_queue_positions(self, queue_type) -> int:
        """Make approved positions contiguous again; returns the number of rows changed."""
        moved, total = self.reassign_approved_positions(queue_type)
        logger.info(f"Recalculated positions for {total} entries in {QueueType.parse(queue_type).value} queue "
                    f"({len(moved)} changed)")
        return len(moved)

    def update_queue_position(self, entry_id, position: int) -> QueueEntry:
        if not isinstance(position, int) or position < 1:
            raise ValidationError(f"Position must be a positive integer: {position!r}", field="position")
        return self._update(entry_id, {"position": position})

    # Removal

    def remove_from_queue(self, entry_id) -> bool:
        removed = self.db.delete_entry(entry_id)
        if removed:
            logger.info(f"Removed queue entry {entry_id}")
        else:
            logger.warning(f"Queue entry {entry_id} was already gone")
        return removed

    def remove_from_queue_with_update(self, entry_id, queue_type) -> bool:
        queue_type = QueueType.parse(queue_type)
        with self.position_lock(queue_type):
            removed = self.remove_from_queue(entry_id)
            self.recalculate_queue_positions(queue_type)
        return removed

    # Helpers

    def notify(self, build: Callable[[], Notification]) -> DispatchResult:
        """Build and send a notification without ever failing the caller."""
        try:
            notification = build()
        except ValidationError as e:
            logger.warning(f"Notification skipped: {e.message}")
            return Deferred(reason=e.message)
        return self.dispatcher.send(notification)

    def _fetch(self, queue_type: Optional[QueueType], statuses, order_by: str) -> List[QueueEntry]:
        rows = self.db.fetch_entries(
            queue_type=queue_type.value if queue_type else None,
            statuses=[status.value for status in statuses] if statuses else None,
            order_by=order_by,
        )
        return [QueueEntry.from_row(row) for row in rows]

    def _update(self, entry_id, fields: Dict[str, Any]) -> QueueEntry:
        row = self.db.update_entry(entry_id, fields)
        if row is None:
            raise EntryNotFoundError(entry_id)
        return QueueEntry.from_row(row)

    def _check_transition(self, entry: QueueEntry, target: QueueStatus) -> None:
        if not can_transition(entry.status, target):
            raise InvalidTransitionError(entry.status.value, target.value)
