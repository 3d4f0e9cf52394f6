"""Shared validation utilities"""

import re
from datetime import datetime, timezone
from typing import Iterable, Optional


def validate_email(email: Optional[str]) -> Optional[str]:
    """
    Validate email format.

    Args:
        email: Email address string

    Returns:
        Lowercase email address

    Raises:
        ValueError: If email format is invalid
    """
    if not email:
        return email

    email = email.strip().lower()

    # Basic email validation pattern
    email_pattern = r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"

    if not re.match(email_pattern, email):
        raise ValueError("Invalid email format")

    return email


def validate_choice(value: Optional[str], allowed: Iterable[str], field: str) -> Optional[str]:
    """Check that value is one of allowed. None passes through"""
    if value is None:
        return value
    allowed = tuple(allowed)
    if value not in allowed:
        raise ValueError(f"{field} must be one of: {', '.join(allowed)}")
    return value


def validate_non_negative(value: Optional[float], field: str) -> Optional[float]:
    if value is not None and value < 0:
        raise ValueError(f"{field} cannot be negative")
    return value


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps are stored as naive UTC. Aware values are converted"""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
