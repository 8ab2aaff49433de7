"""
Input validation for queue submissions and admin actions.
"""
import re
from typing import Dict, Any, List

from consultation_queue.errors import ValidationError

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_required_fields(data: Dict[str, Any], required_fields: List[str]) -> None:
    """
    Raise ValidationError naming every missing or blank field.

    Args:
        data: Dictionary of input data
        required_fields: List of required field names
    """
    missing = [field for field in required_fields if is_blank(data.get(field))]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", field=missing[0])


def validate_email(email: str) -> str:
    """Return the trimmed address, or raise ValidationError if it is malformed."""
    if is_blank(email):
        raise ValidationError("Email is required", field="email")
    email = email.strip()
    if len(email) > 254 or not EMAIL_PATTERN.match(email):
        raise ValidationError(f"Invalid email address: {email}", field="email")
    return email


def validate_reason(reason: str, field: str = "reason") -> str:
    if is_blank(reason):
        raise ValidationError("Please provide a reason", field=field)
    return reason.strip()
