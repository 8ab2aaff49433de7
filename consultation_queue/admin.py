"""Admin actions on queue entries: approve, decline, resend, update position, call."""
from dataclasses import dataclass
from typing import Optional, List

from consultation_queue.admin_codes import AdminCodeStore
from consultation_queue.errors import StoreError, ValidationError
from consultation_queue.logging_conf import logger
from consultation_queue.notifications import (
    ApprovalNotification,
    DeclineNotification,
    DispatchResult,
    PositionUpdateNotification,
    YourTurnNotification,
)
from consultation_queue.position_monitor import PositionMonitor
from consultation_queue.queue.models import QueueEntry, QueueStatus
from consultation_queue.queue.service import QueueService
from consultation_queue.validators import is_blank


@dataclass
class AdminActionResult:
    """What the operator is shown after an action."""

    success: bool
    message: str
    entry: Optional[QueueEntry] = None
    dispatch: Optional[DispatchResult] = None


class AdminWorkflow:
    """Operator-facing actions. Store failures become failed results, never exceptions."""

    def __init__(self, service: QueueService, monitor: PositionMonitor, codes: Optional[AdminCodeStore] = None):
        self.service = service
        self.monitor = monitor
        self.codes = codes or AdminCodeStore(service.db)

    def authorize(self, role, code: str) -> bool:
        """Coarse gate in front of the admin screens."""
        try:
            allowed = self.codes.verify(role, code)
        except (StoreError, ValidationError) as e:
            logger.error(f"Admin code check failed: {e}")
            return False
        if not allowed:
            logger.warning(f"Rejected admin code for role {role}")
        return allowed

    def load_pending(self) -> List[QueueEntry]:
        return self.service.get_pending_queue_entries()

    def approve(self, entry_id, notes: str = "", position: Optional[int] = None) -> AdminActionResult:
        """
        Approve a waiting entry.

        `position` is the place reported in the approval email; it defaults
        to the end of the approved list. Positions of the whole approved set
        are then renumbered and the top of the queue is notified.
        """
        try:
            entry = self.service.get_queue_entry(entry_id)
            if entry.status != QueueStatus.WAITING:
                return AdminActionResult(False, f"Only waiting requests can be approved (status: {entry.status.value})", entry)
            if position is None:
                position = len(self.service.get_approved_entries(entry.queue_type)) + 1
            elif position < 1:
                return AdminActionResult(False, "Queue position must be at least 1", entry)

            updated = self.service.approve_queue_entry(entry_id, notes, queue_position=position)
        except (StoreError, ValidationError) as e:
            logger.error(f"Error approving queue entry {entry_id}: {e}")
            return AdminActionResult(False, "Failed to update consultation status")

        result = self.monitor.trigger_position_update(updated.queue_type)
        if not result.success:
            logger.warning(f"Position update had issues: {result.error}")

        return AdminActionResult(
            True,
            f"{updated.full_name}'s consultation has been approved and email sent.",
            updated,
        )

    def decline(self, entry_id, reason: str) -> AdminActionResult:
        if is_blank(reason):
            return AdminActionResult(False, "Please provide a reason for declining.")
        try:
            updated = self.service.decline_queue_entry(entry_id, reason)
        except (StoreError, ValidationError) as e:
            logger.error(f"Error declining queue entry {entry_id}: {e}")
            return AdminActionResult(False, "Failed to update consultation status")
        return AdminActionResult(True, f"{updated.full_name}'s consultation has been declined.", updated)

    def resend(self, entry_id) -> AdminActionResult:
        """Send the approval or decline email again, unchanged."""
        try:
            entry = self.service.get_queue_entry(entry_id)
        except StoreError as e:
            logger.error(f"Error resending email for {entry_id}: {e}")
            return AdminActionResult(False, "Failed to resend email")

        if entry.status == QueueStatus.APPROVED:
            dispatch = self.service.notify(lambda: ApprovalNotification(
                entry.email, entry.first_name, entry.last_name,
                position=entry.position, note=entry.reason,
            ))
        elif entry.status == QueueStatus.DECLINED:
            dispatch = self.service.notify(lambda: DeclineNotification(
                entry.email, entry.first_name, entry.last_name,
                decline_reason=entry.decline_reason or entry.reason,
            ))
        else:
            return AdminActionResult(False, f"Nothing to resend for a {entry.status.value} request", entry)

        return self._sent(entry, dispatch, f"Email resent to {entry.full_name}")

    def update_position(self, entry_id) -> AdminActionResult:
        """Email an approved requester their current rank."""
        try:
            entry = self.service.get_queue_entry(entry_id)
            if entry.status != QueueStatus.APPROVED:
                return AdminActionResult(False, "Position updates are only sent for approved requests", entry)
            approved = self.service.get_approved_entries(entry.queue_type)
        except StoreError as e:
            logger.error(f"Error sending position update for {entry_id}: {e}")
            return AdminActionResult(False, "Failed to send position update")

        rank = next((index + 1 for index, other in enumerate(approved) if other.id == entry.id), None)
        if rank is None:
            return AdminActionResult(False, "Failed to send position update", entry)

        dispatch = self.service.notify(lambda: PositionUpdateNotification(
            entry.email, entry.first_name, entry.last_name, position=rank,
        ))
        return self._sent(entry, dispatch, f"Position update sent to {entry.full_name}")

    def call(self, entry_id) -> AdminActionResult:
        """Tell an approved requester it is their turn."""
        try:
            entry = self.service.get_queue_entry(entry_id)
        except StoreError as e:
            logger.error(f"Error sending your turn notification for {entry_id}: {e}")
            return AdminActionResult(False, "Failed to send notification")
        if entry.status != QueueStatus.APPROVED:
            return AdminActionResult(False, "Only approved requests can be called", entry)

        dispatch = self.service.notify(lambda: YourTurnNotification(
            entry.email, entry.first_name, entry.last_name,
        ))
        return self._sent(entry, dispatch, f'"Your turn" notification sent to {entry.full_name}')

    def _sent(self, entry: QueueEntry, dispatch: DispatchResult, message: str) -> AdminActionResult:
        if dispatch.fallback:
            message = f"{message} (delivery deferred: {dispatch.reason})"
        return AdminActionResult(True, message, entry, dispatch)
