"""Input validation utilities for Access Vision."""

from __future__ import annotations

import re

from access_vision.core.exceptions import ValidationError

_DATA_URL_RE = re.compile(r"^data:image/[a-zA-Z0-9.+-]+;base64,[A-Za-z0-9+/=\s]+$")


def validate_interval_ms(interval_ms: int) -> bool:
    """Validate a detection tick interval.

    Args:
        interval_ms: Interval in milliseconds.

    Returns:
        True if valid.

    Raises:
        ValidationError: If the interval is not a positive integer.
    """
    if isinstance(interval_ms, bool) or not isinstance(interval_ms, int):
        raise ValidationError("interval_ms must be an integer")

    if interval_ms <= 0:
        raise ValidationError("interval_ms must be greater than 0")

    return True


def validate_cooldown_ms(cooldown_ms: int) -> bool:
    """Validate an access-event cooldown window.

    Raises:
        ValidationError: If the cooldown is negative or not an integer.
    """
    if isinstance(cooldown_ms, bool) or not isinstance(cooldown_ms, int):
        raise ValidationError("cooldown_ms must be an integer")

    if cooldown_ms < 0:
        raise ValidationError("cooldown_ms cannot be negative")

    return True


def validate_frame(frame: str) -> bool:
    """Validate an encoded still image.

    Args:
        frame: ``data:image/...;base64,...`` URL.

    Returns:
        True if valid.

    Raises:
        ValidationError: If the frame is empty or not a base64 image data URL.
    """
    if not frame or not isinstance(frame, str):
        raise ValidationError("frame cannot be empty")

    if not _DATA_URL_RE.match(frame):
        raise ValidationError("frame must be a base64 image data URL")

    return True


def validate_limit(limit: int, maximum: int = 500) -> bool:
    """Validate a result-count limit for listing endpoints.

    Raises:
        ValidationError: If limit is outside 1..maximum.
    """
    if limit < 1 or limit > maximum:
        raise ValidationError(f"limit must be between 1 and {maximum}")

    return True
