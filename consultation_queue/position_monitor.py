"""Watches queue positions and emails requesters when theirs moves."""
from dataclasses import dataclass
from typing import Dict, List, Any, Optional

from consultation_queue import settings
from consultation_queue.change_feed import ChangeFeed, ChangeEvent, Subscription
from consultation_queue.errors import StoreError, ValidationError
from consultation_queue.logging_conf import logger
from consultation_queue.notifications import PositionUpdateNotification
from consultation_queue.queue.models import QueueEntry, QueueStatus, QueueType
from consultation_queue.queue.service import QueueService


@dataclass
class PositionUpdateResult:
    success: bool
    message: str
    updated_count: int = 0
    total_entries: int = 0
    notified_count: int = 0
    error: Optional[str] = None


class PositionMonitor:
    """
    Two notification paths for position changes:

    - trigger_position_update: renumbers the approved set and emails every
      moved entry that lands in the top positions. Called by the admin
      workflow after each approval. Moved entries further down are not
      recorded in the history, so the next change event emails them.
    - change events: on every row change for a queue the working set is
      re-read and compared with the positions seen last time. Approved
      entries whose position differs get an update email. The history is
      kept in memory only, so the first event after start never notifies.
    """

    def __init__(self, service: QueueService, feed: ChangeFeed, top_threshold: Optional[int] = None):
        self.service = service
        self.feed = feed
        self.top_threshold = top_threshold or settings.TOP_POSITION_THRESHOLD
        self._subscriptions: Dict[QueueType, Subscription] = {}
        self._previous: Dict[QueueType, Dict[Any, int]] = {}

    @property
    def is_monitoring(self) -> bool:
        return bool(self._subscriptions)

    def start(self, queue_type: str = "all"):
        """Subscribe to change events for one queue, or both with "all"."""
        queue_types = self._resolve(queue_type)
        pending = [qt for qt in queue_types if qt not in self._subscriptions]
        if not pending:
            logger.info("Position monitoring already active")
            return

        for qt in pending:
            self._previous[qt] = {}
            self._subscriptions[qt] = self.feed.subscribe(qt, self._on_change)
            logger.info(f"Started position monitoring for {qt.value} queue")

    def stop(self, queue_type: str = "all"):
        for qt in self._resolve(queue_type):
            subscription = self._subscriptions.pop(qt, None)
            if subscription is None:
                continue
            subscription.unsubscribe()
            self._previous.pop(qt, None)
            logger.info(f"Stopped monitoring {qt.value} queue")

    def status(self) -> Dict[str, Any]:
        return {
            "is_monitoring": self.is_monitoring,
            "active_subscriptions": [qt.value for qt in self._subscriptions],
            "subscription_count": len(self._subscriptions),
        }

    def check_position_changes(self, queue_type) -> List[QueueEntry]:
        """Diff the working set against the last observation; returns entries notified."""
        queue_type = QueueType.parse(queue_type)
        notified = []
        with self.service.position_lock(queue_type):
            entries = self.service.get_active_entries(queue_type)
            history = self._previous.setdefault(queue_type, {})

            for entry in entries:
                previous = history.get(entry.id)
                if (previous is not None
                        and previous != entry.position
                        and entry.status == QueueStatus.APPROVED
                        and entry.email):
                    logger.info(f"Position change for {entry.full_name}: {previous} -> {entry.position}")
                    self._send_update(entry)
                    notified.append(entry)

            for entry in entries:
                history[entry.id] = entry.position
        return notified

    def trigger_position_update(self, queue_type) -> PositionUpdateResult:
        """Renumber approved entries now and notify the ones that reach the top."""
        try:
            queue_type = QueueType.parse(queue_type)
            logger.info(f"Triggering position update for {queue_type.value} queue")
            with self.service.position_lock(queue_type):
                moved, total = self.service.reassign_approved_positions(queue_type)
                notified = 0
                history = self._previous.get(queue_type)
                for entry, _previous in moved:
                    if not entry.email or entry.position > self.top_threshold:
                        # Left for the next change event to report
                        continue
                    self._send_update(entry)
                    notified += 1
                    if history is not None:
                        history[entry.id] = entry.position
        except (StoreError, ValidationError) as e:
            logger.error(f"Error triggering position update: {e}")
            return PositionUpdateResult(success=False, message="Position update failed", error=str(e))

        if total == 0:
            message = f"No entries to update in {queue_type.value} queue"
        else:
            message = f"Updated positions for {len(moved)} entries in {queue_type.value} queue"
        logger.info(message)
        return PositionUpdateResult(
            success=True,
            message=message,
            updated_count=len(moved),
            total_entries=total,
            notified_count=notified,
        )

    def _on_change(self, event: ChangeEvent):
        logger.debug(f"Queue update detected for {event.queue_type.value}: {event.op} {event.entry_id}")
        try:
            self.check_position_changes(event.queue_type)
        except StoreError as e:
            logger.error(f"Error processing queue update: {e}")

    def _send_update(self, entry: QueueEntry):
        position = entry.position
        self.service.notify(lambda: PositionUpdateNotification(
            entry.email, entry.first_name, entry.last_name, position=position
        ))

    def _resolve(self, queue_type) -> List[QueueType]:
        if queue_type == "all":
            return list(QueueType)
        return [QueueType.parse(queue_type)]
