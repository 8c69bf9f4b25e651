"""
Archive extractors for SMS/MMS and call-log backups.

This module parses the XML exports written by Android backup apps
("SMS Backup & Restore" format) into typed records ready for loading.

Design Decisions:
    1. Archives are untrusted input - structure is checked before any record
       is built, and a structural failure raises ArchiveFormatError
    2. Archive type is sniffed from the raw text (<smses vs <calls), not from
       a caller-supplied flag
    3. Child elements are always collected as lists, so a lone <sms> or
       <call> is handled exactly like many of them
    4. Placeholder strings ("null", "(Unknown)") are collapsed to None here,
       so they never reach the database
    5. Individual malformed records are skipped and logged, never fatal

Archive Formats:
    <smses count="2">
      <sms address="0412345678" date="1700000000000" type="1" body="Hi"
           readable_date="..." contact_name="Alice" sub_id="1" />
      <mms address="0412345678" date="1700000001000" msg_box="2" ...>
        <parts><part ct="text/plain" text="Photo!" /></parts>
      </mms>
    </smses>

    <calls count="1">
      <call number="0412345678" duration="65" date="1700000000000" type="1"
            readable_date="..." contact_name="Alice" subscription_id="1" />
    </calls>
"""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from enum import IntEnum, StrEnum
from typing import List, Optional, Tuple, Union

from phone_archive.etl.identity import generate_call_id, generate_message_id
from phone_archive.etl.normalizers import (
    clean_body,
    clean_contact_name,
    clean_readable_date,
    clean_subscription_id,
    normalize_phone,
)

logger = logging.getLogger(__name__)

MESSAGES_ROOT = "smses"
CALLS_ROOT = "calls"

MMS_TEXT_CONTENT_TYPE = "text/plain"

ArchiveText = Union[str, bytes]


class ArchiveFormatError(ValueError):
    """Raised when an archive is not well-formed or is of the wrong type."""


class ArchiveKind(StrEnum):
    """Type of backup archive."""

    MESSAGES = "messages"
    CALLS = "calls"


class MessageKind(StrEnum):
    """Transport of a message."""

    SMS = "sms"
    MMS = "mms"


class Direction(IntEnum):
    """
    Message box codes used by Android (sms.type / mms.msg_box).

    Messages persist the raw integer; this enum is the typed view of it.
    """

    UNKNOWN = 0
    RECEIVED = 1
    SENT = 2
    DRAFT = 3
    OUTBOX = 4
    FAILED = 5
    QUEUED = 6

    @classmethod
    def from_code(cls, code: Optional[int]) -> "Direction":
        """Map a raw code to a Direction; unmapped codes are UNKNOWN."""
        try:
            return cls(code)
        except ValueError:
            return cls.UNKNOWN


class CallType(StrEnum):
    """Call log entry types."""

    INCOMING = "incoming"
    OUTGOING = "outgoing"
    MISSED = "missed"
    VOICEMAIL = "voicemail"
    REJECTED = "rejected"
    BLOCKED = "blocked"
    UNKNOWN = "unknown"

    @classmethod
    def from_code(cls, code: Optional[int]) -> "CallType":
        """Map a raw call type code to a CallType; unmapped codes are UNKNOWN."""
        return _CALL_TYPE_CODES.get(code, cls.UNKNOWN) if code is not None else cls.UNKNOWN


_CALL_TYPE_CODES = {
    1: CallType.INCOMING,
    2: CallType.OUTGOING,
    3: CallType.MISSED,
    4: CallType.VOICEMAIL,
    5: CallType.REJECTED,
    6: CallType.BLOCKED,
}


@dataclass
class Message:
    """Parsed SMS or MMS record."""

    id: str
    phone: str
    phone_raw: Optional[str]
    kind: MessageKind
    direction: int
    body: Optional[str]
    timestamp: int  # epoch milliseconds
    readable_date: Optional[str] = None
    contact_name: Optional[str] = None
    subscription_id: Optional[str] = None
    sim_slot: Optional[int] = None
    created_at: Optional[int] = None  # set by the store

    @property
    def direction_kind(self) -> Direction:
        return Direction.from_code(self.direction)


@dataclass
class Call:
    """Parsed call log record."""

    id: str
    phone: str
    phone_raw: Optional[str]
    call_type: CallType
    call_type_code: int
    duration: int  # seconds
    timestamp: int  # epoch milliseconds
    readable_date: Optional[str] = None
    contact_name: Optional[str] = None
    subscription_id: Optional[str] = None
    created_at: Optional[int] = None  # set by the store


def detect_archive_kind(text: ArchiveText) -> Optional[ArchiveKind]:
    """
    Sniff the archive type from its raw content.

    Args:
        text: Raw archive content.

    Returns:
        ArchiveKind, or None if neither root marker is present.
    """
    if isinstance(text, bytes):
        if b"<" + MESSAGES_ROOT.encode() in text:
            return ArchiveKind.MESSAGES
        if b"<" + CALLS_ROOT.encode() in text:
            return ArchiveKind.CALLS
        return None

    if f"<{MESSAGES_ROOT}" in text:
        return ArchiveKind.MESSAGES
    if f"<{CALLS_ROOT}" in text:
        return ArchiveKind.CALLS
    return None


def find_children(parent: ET.Element, tag: str) -> List[ET.Element]:
    """Direct children of parent with the given tag, always as a list."""
    return list(parent.findall(tag))


def _parse_root(text: ArchiveText, expected_root: str) -> ET.Element:
    """Parse archive XML and check its root element."""
    if not text:
        raise ArchiveFormatError("Archive is empty")

    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise ArchiveFormatError(f"Archive is not well-formed XML: {e}") from e

    if root.tag != expected_root:
        raise ArchiveFormatError(
            f"Unexpected root element <{root.tag}>, expected <{expected_root}>"
        )
    return root


def _parse_int(value: Optional[str]) -> Optional[int]:
    """Parse an integer attribute; None if missing or not numeric."""
    if value is None:
        return None
    try:
        return int(value.strip())
    except ValueError:
        return None


def _extract_mms_text(mms: ET.Element) -> Optional[str]:
    """Text of the first text/plain part of an MMS, if any."""
    parts_container = mms.find("parts")
    if parts_container is None:
        return None

    for part in find_children(parts_container, "part"):
        if part.get("ct") == MMS_TEXT_CONTENT_TYPE:
            return part.get("text") or None
    return None


def _build_message(
    element: ET.Element,
    kind: MessageKind,
    direction_attr: str,
) -> Optional[Message]:
    """Build a Message from an <sms> or <mms> element, or None if unusable."""
    address = element.get("address")
    timestamp = _parse_int(element.get("date"))
    direction = _parse_int(element.get(direction_attr))

    if timestamp is None or direction is None:
        logger.debug(
            f"Skipping {kind} with unusable date/{direction_attr}: "
            f"date={element.get('date')!r} {direction_attr}={element.get(direction_attr)!r}"
        )
        return None

    if kind is MessageKind.SMS:
        body = clean_body(element.get("body"))
    else:
        body = _extract_mms_text(element)

    phone = normalize_phone(address).normalized
    message_id = generate_message_id(phone, timestamp, kind, direction, body)

    return Message(
        id=message_id,
        phone=phone,
        phone_raw=address,
        kind=kind,
        direction=direction,
        body=body,
        timestamp=timestamp,
        readable_date=clean_readable_date(element.get("readable_date")),
        contact_name=clean_contact_name(element.get("contact_name")),
        subscription_id=clean_subscription_id(element.get("sub_id")),
    )


def parse_messages_xml(text: ArchiveText) -> List[Message]:
    """
    Parse an SMS/MMS backup archive.

    SMS records come first in document order, followed by MMS records.

    Args:
        text: Raw XML content with an <smses> root.

    Returns:
        List of Message records (created_at unset).

    Raises:
        ArchiveFormatError: If the XML is malformed or the root is not <smses>.
    """
    root = _parse_root(text, MESSAGES_ROOT)

    messages: List[Message] = []
    skipped = 0

    for element in find_children(root, "sms"):
        message = _build_message(element, MessageKind.SMS, "type")
        if message is None:
            skipped += 1
            continue
        messages.append(message)

    # msg_box: 1=received, 2=sent - same codes as sms.type
    for element in find_children(root, "mms"):
        message = _build_message(element, MessageKind.MMS, "msg_box")
        if message is None:
            skipped += 1
            continue
        messages.append(message)

    logger.info(f"Parsed {len(messages)} messages from archive (skipped {skipped})")
    return messages


def parse_calls_xml(text: ArchiveText) -> List[Call]:
    """
    Parse a call log backup archive.

    Calls without a number (withheld/private callers) cannot be keyed and
    are left out of the result.

    Args:
        text: Raw XML content with a <calls> root.

    Returns:
        List of Call records (created_at unset).

    Raises:
        ArchiveFormatError: If the XML is malformed or the root is not <calls>.
    """
    root = _parse_root(text, CALLS_ROOT)

    calls: List[Call] = []
    skipped = 0

    for element in find_children(root, "call"):
        number = element.get("number")
        if not number:
            skipped += 1
            continue

        timestamp = _parse_int(element.get("date"))
        type_code = _parse_int(element.get("type"))
        if timestamp is None or type_code is None:
            logger.debug(
                f"Skipping call with unusable date/type: "
                f"date={element.get('date')!r} type={element.get('type')!r}"
            )
            skipped += 1
            continue

        duration = max(_parse_int(element.get("duration")) or 0, 0)
        phone = normalize_phone(number).normalized

        calls.append(
            Call(
                id=generate_call_id(phone, timestamp, type_code, duration),
                phone=phone,
                phone_raw=number,
                call_type=CallType.from_code(type_code),
                call_type_code=type_code,
                duration=duration,
                timestamp=timestamp,
                readable_date=clean_readable_date(element.get("readable_date")),
                contact_name=clean_contact_name(element.get("contact_name")),
                subscription_id=clean_subscription_id(element.get("subscription_id")),
            )
        )

    logger.info(f"Parsed {len(calls)} calls from archive (skipped {skipped})")
    return calls


def parse_archive(text: ArchiveText) -> Tuple[ArchiveKind, Union[List[Message], List[Call]]]:
    """
    Detect the archive type and parse it.

    Args:
        text: Raw XML content of either archive type.

    Returns:
        Tuple of (archive kind, parsed records).

    Raises:
        ArchiveFormatError: If no archive marker is present or parsing fails.
    """
    kind = detect_archive_kind(text)

    if kind is ArchiveKind.MESSAGES:
        return kind, parse_messages_xml(text)
    if kind is ArchiveKind.CALLS:
        return kind, parse_calls_xml(text)

    raise ArchiveFormatError("Not a messages (<smses>) or calls (<calls>) archive")
