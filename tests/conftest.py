"""
Pytest configuration and shared fixtures
"""
import os
import threading
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest

os.environ.setdefault("EMAIL_FUNCTION_URL", "https://functions.example.com/send-email")
os.environ.setdefault("EMAIL_FUNCTION_TOKEN", "test-token")

from consultation_queue.db import UPDATABLE_COLUMNS  # noqa: E402
from consultation_queue.errors import StoreError  # noqa: E402
from consultation_queue.notifications import Sent  # noqa: E402
from consultation_queue.queue.service import QueueService  # noqa: E402

# 2025-01-06 is a Monday
START = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Returns a strictly increasing timestamp on every call."""

    def __init__(self, start=START, step=timedelta(minutes=1)):
        self.current = start
        self.step = step

    def __call__(self):
        value = self.current
        self.current += self.step
        return value


class FakeDatabase:
    """In-memory stand-in for Database with the same method surface."""

    def __init__(self, insert_delay=0.0):
        self.rows = {}
        self.admin_codes = {}
        self.next_id = 1
        self.insert_delay = insert_delay
        self.fail = False
        self.position_writes = []

    def _check(self):
        if self.fail:
            raise StoreError("database unavailable")

    def insert_waiting_entry(self, first_name, last_name, email, reason, queue_type, created_at):
        self._check()
        # Read-then-write with a gap, like the unguarded original
        position = (self.max_waiting_position(queue_type) or 0) + 1
        if self.insert_delay:
            time.sleep(self.insert_delay)
        row = {
            "id": self.next_id,
            "first_name": first_name,
            "last_name": last_name,
            "email": email,
            "reason": reason,
            "queue_type": queue_type,
            "status": "waiting",
            "position": position,
            "created_at": created_at,
            "updated_at": None,
            "approved_at": None,
            "declined_at": None,
            "admin_notes": None,
            "decline_reason": None,
        }
        self.rows[self.next_id] = row
        self.next_id += 1
        return dict(row)

    def max_waiting_position(self, queue_type):
        self._check()
        positions = [r["position"] for r in self.rows.values()
                     if r["queue_type"] == queue_type and r["status"] == "waiting"]
        return max(positions) if positions else None

    def count_entries(self, queue_type=None, status=None):
        self._check()
        return len([r for r in self.rows.values()
                    if (queue_type is None or r["queue_type"] == queue_type)
                    and (status is None or r["status"] == status)])

    def count_updated_between(self, status, start, end):
        self._check()
        return len([r for r in self.rows.values()
                    if r["status"] == status and r["updated_at"] and start <= r["updated_at"] < end])

    def fetch_entries(self, queue_type=None, statuses=None, order_by="position"):
        self._check()
        rows = [dict(r) for r in self.rows.values()
                if (queue_type is None or r["queue_type"] == queue_type)
                and (statuses is None or r["status"] in statuses)]
        if order_by == "position":
            rows.sort(key=lambda r: (r["position"], r["created_at"]))
        elif order_by == "created_at":
            rows.sort(key=lambda r: r["created_at"])
        else:
            rows.sort(key=lambda r: r["created_at"], reverse=True)
        return rows

    def get_entry(self, entry_id):
        self._check()
        row = self.rows.get(entry_id)
        return dict(row) if row else None

    def update_entry(self, entry_id, fields):
        self._check()
        assert set(fields) <= UPDATABLE_COLUMNS
        row = self.rows.get(entry_id)
        if row is None:
            return None
        row.update(fields)
        return dict(row)

    def update_positions(self, updates):
        self._check()
        for entry_id, position in updates:
            self.rows[entry_id]["position"] = position
        self.position_writes.append(list(updates))
        return len(updates)

    def delete_entry(self, entry_id):
        self._check()
        return self.rows.pop(entry_id, None) is not None

    def get_admin_codes(self):
        self._check()
        return dict(self.admin_codes)

    def store_admin_codes(self, codes, updated_at):
        self._check()
        self.admin_codes.update(codes)
        self.admin_codes["last_updated"] = updated_at

    def close(self):
        pass


class RecordingDispatcher:
    """Collects notifications instead of calling the email function."""

    def __init__(self):
        self.sent = []
        self._lock = threading.Lock()

    def send(self, notification):
        with self._lock:
            self.sent.append(notification)
        return Sent(email_id=f"email-{len(self.sent)}")

    def of_type(self, type_):
        return [n for n in self.sent if n.type == type_]


class FakeFeed:
    """ChangeFeed double: subscriptions are recorded and fired by hand."""

    def __init__(self):
        self.callbacks = {}
        self.unsubscribed = []

    def subscribe(self, queue_type, callback):
        subscription = MagicMock()
        subscription.unsubscribe.side_effect = lambda: self.unsubscribed.append(queue_type)
        self.callbacks[queue_type] = callback
        return subscription

    def fire(self, queue_type, op="UPDATE", entry_id=1):
        from consultation_queue.change_feed import ChangeEvent
        from consultation_queue.queue.models import QueueType

        queue_type = QueueType(queue_type)
        self.callbacks[queue_type](ChangeEvent(op=op, entry_id=entry_id, queue_type=queue_type))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db():
    return FakeDatabase()


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def service(db, dispatcher, clock):
    return QueueService(db, dispatcher, clock=clock)


@pytest.fixture
def feed():
    return FakeFeed()


@pytest.fixture
def add_entry(service):
    """Submit a request with sensible defaults."""
    counter = {"n": 0}

    def _add(queue_type="pastor", first_name=None, last_name="Doe", email=None, reason="prayer"):
        counter["n"] += 1
        n = counter["n"]
        return service.add_to_queue(
            first_name or f"Person{n}",
            last_name,
            email or f"person{n}@example.com",
            reason,
            queue_type,
        )

    return _add
