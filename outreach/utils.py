"""
Utility functions for the outreach service.
"""

import hmac
import hashlib
import logging
import uuid
from datetime import datetime, timezone
from typing import Iterable, Union

from outreach.errors import ValidationError

logger = logging.getLogger(__name__)

ADDRESS_PREFIX = "+"


def now_utc() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


def normalize_recipients(recipients: Union[str, Iterable[str]]) -> list[str]:
    """
    Trim each address, drop empty entries and make sure each one carries
    the leading address prefix. Order is preserved.

    A single string is treated as a comma-separated list.

    Raises:
        ValidationError: recipients is not a string or an iterable of strings
    """
    if isinstance(recipients, str):
        recipients = recipients.split(",")
    elif not isinstance(recipients, Iterable):
        raise ValidationError(f"recipients must be a list of strings, got {type(recipients).__name__}")
    normalized = []
    for raw in recipients:
        if not isinstance(raw, str):
            raise ValidationError(f"recipient must be a string, got {type(raw).__name__}")
        address = raw.strip()
        if not address:
            continue
        if not address.startswith(ADDRESS_PREFIX):
            address = ADDRESS_PREFIX + address
        normalized.append(address)
    return normalized


def verify_hmac_signature(body: bytes, signature: str, secret: str) -> bool:
    """
    Verify HMAC-SHA256 signature.

    Args:
        body: Raw request body bytes
        signature: Hex-encoded signature from X-Signature header
        secret: WEBHOOK_SECRET

    Returns:
        True if signature is valid, False otherwise
    """
    logger.debug(f"Verifying HMAC signature over {len(body)} bytes")

    expected_signature = hmac.new(
        secret.encode("utf-8"),
        body,
        hashlib.sha256
    ).hexdigest()

    # Constant-time comparison
    is_valid = hmac.compare_digest(expected_signature, signature)
    logger.info(f"HMAC signature verification: {'valid' if is_valid else 'invalid'}")

    return is_valid
