"""Shared access codes that gate the admin workflow for each office."""
import hmac
import secrets
import string
from datetime import datetime, timezone
from typing import Dict, Optional, Callable

from consultation_queue import settings
from consultation_queue.db import Database
from consultation_queue.logging_conf import logger
from consultation_queue.queue.models import QueueType

CODE_ALPHABET = string.ascii_uppercase + string.digits


def generate_admin_code(role, year: Optional[int] = None, prefix: Optional[str] = None) -> str:
    """Build a code like AFMA2025PASTOR7Q2K9D."""
    role = QueueType.parse(role)
    year = year or datetime.now(timezone.utc).year
    prefix = settings.ADMIN_CODE_PREFIX if prefix is None else prefix
    suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(6))
    return f"{prefix}{year}{role.value.upper()}{suffix}"


class AdminCodeStore:
    """Reads, regenerates and checks the admin codes kept in the database."""

    def __init__(self, db: Database, clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.db = db
        self.clock = clock

    def regenerate(self) -> Dict[str, str]:
        """Replace both codes with fresh ones."""
        now = self.clock()
        codes = {role.value: generate_admin_code(role, year=now.year) for role in QueueType}
        self.db.store_admin_codes(codes, updated_at=now)
        logger.info("Admin codes regenerated")
        return codes

    def get_codes(self) -> Dict[str, str]:
        """Current codes; generates a pair the first time."""
        codes = self.db.get_admin_codes()
        if all(role.value in codes for role in QueueType):
            return codes
        return self.regenerate()

    def verify(self, role, code: str) -> bool:
        if not code:
            return False
        expected = self.get_codes().get(QueueType.parse(role).value)
        if not expected:
            return False
        return hmac.compare_digest(expected.encode(), code.strip().upper().encode())
