"""Change notifications for queue_entries via PostgreSQL LISTEN/NOTIFY."""
import json
import select
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Any, Optional

from psycopg2 import sql

from consultation_queue import settings
from consultation_queue.db import Database
from consultation_queue.logging_conf import logger
from consultation_queue.queue.models import QueueType


@dataclass(frozen=True)
class ChangeEvent:
    """One row change announced by the queue_entries trigger."""

    op: str  # INSERT, UPDATE or DELETE
    entry_id: Any
    queue_type: QueueType

    @classmethod
    def parse(cls, payload: str) -> "ChangeEvent":
        data = json.loads(payload)
        return cls(op=data["op"], entry_id=data["id"], queue_type=QueueType(data["queue_type"]))


ChangeCallback = Callable[[ChangeEvent], None]


class Subscription:
    """Handle returned by ChangeFeed.subscribe."""

    def __init__(self, feed: "ChangeFeed", queue_type: QueueType, callback: ChangeCallback):
        self.feed = feed
        self.queue_type = queue_type
        self.callback = callback
        self.active = True

    def unsubscribe(self):
        if self.active:
            self.feed._remove(self)
            self.active = False


class ChangeFeed:
    """Listens for queue_entries changes and fans them out by queue type."""

    def __init__(self, db: Database, channel: Optional[str] = None, wait_seconds: float = 1.0):
        self.db = db
        self.channel = channel or settings.LISTEN_CHANNEL
        self.wait_seconds = wait_seconds
        self.running = False
        self.thread = None
        self._conn = None
        self._subscriptions: Dict[QueueType, List[Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, queue_type, callback: ChangeCallback) -> Subscription:
        """Register a callback for changes to one queue; starts listening if needed."""
        subscription = Subscription(self, QueueType(queue_type), callback)
        with self._lock:
            self._subscriptions.setdefault(subscription.queue_type, []).append(subscription)
        self.start()
        return subscription

    def start(self):
        """Start the listener in a background thread."""
        if self.running:
            return

        self.running = True
        self.thread = threading.Thread(target=self._run, name="queue-change-feed", daemon=True)
        self.thread.start()
        logger.info(f"Change feed started (channel: {self.channel})")

    def stop(self):
        """Stop the listener."""
        if not self.running:
            return

        self.running = False
        if self.thread and self.thread is not threading.current_thread():
            self.thread.join(timeout=10)
        self._close()
        logger.info("Change feed stopped")

    def dispatch(self, payload: str) -> int:
        """Deliver one notification payload to its subscribers; returns callbacks invoked."""
        try:
            event = ChangeEvent.parse(payload)
        except (ValueError, KeyError) as e:
            logger.warning(f"Ignoring malformed change notification {payload!r}: {e}")
            return 0

        with self._lock:
            subscribers = list(self._subscriptions.get(event.queue_type, []))

        for subscription in subscribers:
            try:
                subscription.callback(event)
            except Exception as e:
                logger.error(f"Change callback failed for {event.queue_type.value}: {e}", exc_info=True)
        return len(subscribers)

    def _remove(self, subscription: Subscription):
        with self._lock:
            subscribers = self._subscriptions.get(subscription.queue_type, [])
            if subscription in subscribers:
                subscribers.remove(subscription)
            if not subscribers:
                self._subscriptions.pop(subscription.queue_type, None)
            remaining = sum(len(subs) for subs in self._subscriptions.values())
        if remaining == 0:
            self.stop()

    def _listen(self):
        self._conn = self.db.connect_listener()
        with self._conn.cursor() as cur:
            cur.execute(sql.SQL("LISTEN {}").format(sql.Identifier(self.channel)))
        logger.info(f"Listening on {self.channel}")

    def _close(self):
        if self._conn is not None and not self._conn.closed:
            self._conn.close()
        self._conn = None

    def _run(self):
        """Main listener loop."""
        logger.info("Change feed thread started")

        while self.running:
            try:
                if self._conn is None or self._conn.closed:
                    self._listen()

                ready, _, _ = select.select([self._conn], [], [], self.wait_seconds)
                if not ready:
                    continue

                self._conn.poll()
                while self.running and self._conn is not None and self._conn.notifies:
                    notify = self._conn.notifies.pop(0)
                    self.dispatch(notify.payload)

            except Exception as e:
                logger.error(f"Change feed error: {e}", exc_info=True)
                self._close()
                time.sleep(5)

        logger.info("Change feed thread stopped")
