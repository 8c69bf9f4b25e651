"""
Content identity for archive records.

Every message and call is keyed by a fingerprint of the fields that define
the logical event, not by anything the device assigns. Re-ingesting the same
archive (or an overlapping one) therefore produces the same ids, and the
store's primary key does the deduplication.

Design Decisions:
    1. Fields are joined with '|' (never present in phones, codes or numbers)
    2. SHA-256, truncated to the first 8 bytes, hex-encoded (16 chars)
    3. Only the first 100 characters of a message body take part
    4. A collision means "same phone, same instant, same kind" - i.e. the
       same logical event, which is exactly what should dedup
"""

import hashlib
from typing import Optional, Union

FIELD_SEPARATOR = "|"
FINGERPRINT_BYTES = 8
BODY_PREFIX_LENGTH = 100


def fingerprint(*fields: Union[str, int]) -> str:
    """
    Compute the content fingerprint of an ordered tuple of fields.

    Args:
        *fields: Field values; integers are rendered in decimal.

    Returns:
        16-character lowercase hex string.
    """
    payload = FIELD_SEPARATOR.join(str(value) for value in fields)
    digest = hashlib.sha256(payload.encode("utf-8")).digest()
    return digest[:FINGERPRINT_BYTES].hex()


def generate_message_id(
    phone: str,
    timestamp: int,
    kind: str,
    direction: int,
    body: Optional[str],
) -> str:
    """
    Generate the id of a message.

    Args:
        phone: Normalized phone key.
        timestamp: Epoch milliseconds.
        kind: 'sms' or 'mms'.
        direction: Raw direction code (1=received, 2=sent, ...).
        body: Message text; None counts as empty.

    Returns:
        Message id.
    """
    body_prefix = (body or "")[:BODY_PREFIX_LENGTH]
    return fingerprint(phone, int(timestamp), str(kind), int(direction), body_prefix)


def generate_call_id(phone: str, timestamp: int, call_type_code: int, duration: int) -> str:
    """
    Generate the id of a call.

    Args:
        phone: Normalized phone key.
        timestamp: Epoch milliseconds.
        call_type_code: Raw numeric call type from the archive.
        duration: Call length in seconds.

    Returns:
        Call id.
    """
    return fingerprint(phone, int(timestamp), int(call_type_code), int(duration))
