"""Queue notification payloads and the email function client."""
from dataclasses import dataclass
from typing import Optional, Dict, Any, ClassVar, Union
import requests

from consultation_queue import settings
from consultation_queue.errors import ValidationError
from consultation_queue.logging_conf import logger
from consultation_queue.validators import is_blank


def estimated_time(position: Optional[int], minutes_per_person: Optional[int] = None) -> str:
    """
    Human-readable wait estimate for a queue position.

    Everyone ahead of `position` is assumed to take `minutes_per_person`
    (12 by default), so position 2 waits 12 minutes and position 6 waits
    1 hour.
    """
    per_person = minutes_per_person or settings.MINUTES_PER_PERSON
    if not position or position <= 1:
        return "Ready now"

    total = (position - 1) * per_person
    if total < 60:
        return f"{total} minutes"

    hours, minutes = divmod(total, 60)
    label = f"{hours} hour{'s' if hours > 1 else ''}"
    if minutes == 0:
        return label
    return f"{label} {minutes} minutes"


@dataclass(frozen=True)
class Notification:
    """Base for the four email kinds the email function can render."""

    type: ClassVar[str] = ""

    to: str
    name: str
    surname: str

    def __post_init__(self):
        if is_blank(self.to):
            raise ValidationError("Notification recipient is required", field="to")
        if is_blank(self.name):
            raise ValidationError("Notification recipient name is required", field="name")

    @property
    def queue_position(self) -> Optional[int]:
        return None

    @property
    def reason(self) -> Optional[str]:
        return None

    def payload(self, minutes_per_person: Optional[int] = None) -> Dict[str, Any]:
        """JSON body expected by the email function."""
        return {
            "to": self.to,
            "name": self.name,
            "surname": self.surname,
            "type": self.type,
            "queuePosition": self.queue_position,
            "estimatedTime": estimated_time(self.queue_position, minutes_per_person),
            "reason": self.reason,
        }


def _require_position(position) -> None:
    if not isinstance(position, int) or isinstance(position, bool) or position < 1:
        raise ValidationError(f"Queue position must be a positive integer: {position!r}", field="queue_position")


@dataclass(frozen=True)
class ApprovalNotification(Notification):
    type: ClassVar[str] = "approval"

    position: int = 0
    note: Optional[str] = None

    def __post_init__(self):
        super().__post_init__()
        _require_position(self.position)

    @property
    def queue_position(self) -> Optional[int]:
        return self.position

    @property
    def reason(self) -> Optional[str]:
        return self.note


@dataclass(frozen=True)
class DeclineNotification(Notification):
    type: ClassVar[str] = "decline"

    decline_reason: str = ""

    def __post_init__(self):
        super().__post_init__()
        if is_blank(self.decline_reason):
            raise ValidationError("A decline notification needs a reason", field="reason")

    @property
    def reason(self) -> Optional[str]:
        return self.decline_reason


@dataclass(frozen=True)
class PositionUpdateNotification(Notification):
    type: ClassVar[str] = "position_update"

    position: int = 0

    def __post_init__(self):
        super().__post_init__()
        _require_position(self.position)

    @property
    def queue_position(self) -> Optional[int]:
        return self.position


@dataclass(frozen=True)
class YourTurnNotification(Notification):
    type: ClassVar[str] = "your_turn"

    @property
    def queue_position(self) -> Optional[int]:
        return 1


NOTIFICATION_TYPES = {
    cls.type: cls
    for cls in (ApprovalNotification, DeclineNotification, PositionUpdateNotification, YourTurnNotification)
}


def build_notification(to: str, name: str, surname: str, type: str, context: Optional[Dict[str, Any]] = None) -> Notification:
    """Build the notification variant for `type` from a loose context dict."""
    context = context or {}
    if type not in NOTIFICATION_TYPES:
        raise ValidationError(f"Unknown notification type: {type}", field="type")
    if type == "approval":
        return ApprovalNotification(to, name, surname, position=context.get("queue_position"), note=context.get("reason"))
    if type == "decline":
        return DeclineNotification(to, name, surname, decline_reason=context.get("reason"))
    if type == "position_update":
        return PositionUpdateNotification(to, name, surname, position=context.get("queue_position"))
    return YourTurnNotification(to, name, surname)


@dataclass(frozen=True)
class Sent:
    email_id: Optional[str] = None

    success: ClassVar[bool] = True
    fallback: ClassVar[bool] = False


@dataclass(frozen=True)
class Deferred:
    """The email was not delivered; the caller's operation still succeeds."""

    reason: str

    success: ClassVar[bool] = True
    fallback: ClassVar[bool] = True


DispatchResult = Union[Sent, Deferred]


class EmailDispatcher:
    """Sends queue notifications through the email function."""

    def __init__(self, url: Optional[str] = None, token: Optional[str] = None,
                 timeout: Optional[int] = None, session: Optional[requests.Session] = None):
        self.url = url or settings.EMAIL_FUNCTION_URL
        self.timeout = timeout or settings.EMAIL_TIMEOUT
        self.session = session or requests.Session()
        token = token or settings.EMAIL_FUNCTION_TOKEN
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        })

    def send(self, notification: Notification) -> DispatchResult:
        """
        Send a notification. Never raises for delivery problems.

        Returns:
            Sent with the provider's email id, or Deferred with the reason
            the email could not go out.
        """
        payload = notification.payload()
        if not self.url:
            return self._defer(notification, "email function URL is not configured")

        try:
            response = self.session.post(self.url, json=payload, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            return self._defer(notification, f"request failed: {e}")

        if not response.ok:
            error = self._error_body(response)
            details = str(error.get("details") or "")
            if "verify a domain" in details:
                return self._defer(notification, "sending domain is not verified")
            return self._defer(
                notification,
                f"email service error: {response.status_code} - {error.get('error') or 'Unknown error'}",
            )

        try:
            body = response.json()
        except ValueError:
            body = {}
        email_id = body.get("emailId") if isinstance(body, dict) else None
        logger.info(f"Sent {notification.type} email to {notification.to} (id: {email_id})")
        return Sent(email_id=email_id)

    def send_email(self, to: str, name: str, surname: str, type: str,
                   context: Optional[Dict[str, Any]] = None) -> DispatchResult:
        return self.send(build_notification(to, name, surname, type, context))

    def _defer(self, notification: Notification, reason: str) -> Deferred:
        full_name = f"{notification.name} {notification.surname or ''}".strip()
        logger.warning(
            f"Email not sent ({reason}) - would have sent {notification.type} "
            f"to {notification.to} ({full_name})"
        )
        return Deferred(reason=reason)

    def _error_body(self, response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}
