"""
Tests for archive extractors.

Tests archive sniffing, SMS/MMS parsing and call log parsing, including
malformed archives and record-level anomalies.
"""

import pytest

from phone_archive.etl.extractors import (
    ArchiveFormatError,
    ArchiveKind,
    Call,
    CallType,
    Direction,
    Message,
    MessageKind,
    detect_archive_kind,
    parse_archive,
    parse_calls_xml,
    parse_messages_xml,
)
from phone_archive.etl.identity import generate_call_id, generate_message_id


class TestDetectArchiveKind:
    """Tests for archive sniffing."""

    def test_messages(self, messages_xml):
        assert detect_archive_kind(messages_xml) is ArchiveKind.MESSAGES

    def test_calls(self, calls_xml):
        assert detect_archive_kind(calls_xml) is ArchiveKind.CALLS

    def test_bytes(self, calls_xml):
        assert detect_archive_kind(calls_xml.encode("utf-8")) is ArchiveKind.CALLS

    def test_neither(self):
        assert detect_archive_kind("<contacts/>") is None


class TestParseMessagesXml:
    """Tests for SMS/MMS parsing."""

    def test_parses_all_records(self, messages_xml):
        messages = parse_messages_xml(messages_xml)
        assert len(messages) == 4
        assert all(isinstance(m, Message) for m in messages)

    def test_sms_before_mms(self, messages_xml):
        kinds = [m.kind for m in parse_messages_xml(messages_xml)]
        assert kinds == [MessageKind.SMS, MessageKind.SMS, MessageKind.SMS, MessageKind.MMS]

    def test_sms_fields(self, messages_xml):
        first = parse_messages_xml(messages_xml)[0]
        assert first.phone == "+61412345678"
        assert first.phone_raw == "0412 345 678"
        assert first.direction == 1
        assert first.direction_kind is Direction.RECEIVED
        assert first.body == "Hello there"
        assert first.timestamp == 1700000000000
        assert first.contact_name == "Alice"
        assert first.subscription_id == "1"
        assert first.created_at is None
        assert first.id == generate_message_id(
            "+61412345678", 1700000000000, "sms", 1, "Hello there"
        )

    def test_same_phone_written_two_ways(self, messages_xml):
        first, second = parse_messages_xml(messages_xml)[:2]
        assert first.phone == second.phone

    def test_placeholders_become_none(self, messages_xml):
        tpg = parse_messages_xml(messages_xml)[2]
        assert tpg.phone == "TPG"
        assert tpg.readable_date is None
        assert tpg.contact_name is None
        assert tpg.subscription_id is None

    def test_mms_text_part(self, messages_xml):
        mms = parse_messages_xml(messages_xml)[3]
        assert mms.kind is MessageKind.MMS
        assert mms.body == "Look at this"
        assert mms.direction_kind is Direction.SENT
        assert mms.phone == "+61498765432"
        assert mms.subscription_id == "2"

    def test_single_sms(self):
        """A lone <sms> child is handled like a list of one."""
        xml = '<smses count="1"><sms address="321" date="5" type="1" body="code 1234" /></smses>'
        messages = parse_messages_xml(xml)
        assert len(messages) == 1
        assert messages[0].phone == "321"

    def test_empty_archive(self):
        assert parse_messages_xml('<smses count="0"></smses>') == []

    def test_sms_body_null(self):
        xml = '<smses><sms address="TPG" date="5" type="1" body="null" /></smses>'
        assert parse_messages_xml(xml)[0].body is None

    def test_mms_without_text_part(self):
        xml = (
            '<smses><mms address="TPG" date="5" msg_box="1">'
            '<parts><part ct="image/jpeg" /></parts></mms></smses>'
        )
        assert parse_messages_xml(xml)[0].body is None

    def test_unmapped_direction_kept_raw(self):
        xml = '<smses><sms address="TPG" date="5" type="9" body="x" /></smses>'
        message = parse_messages_xml(xml)[0]
        assert message.direction == 9
        assert message.direction_kind is Direction.UNKNOWN

    def test_bad_date_skipped(self):
        xml = (
            "<smses>"
            '<sms address="TPG" date="yesterday" type="1" body="x" />'
            '<sms address="TPG" date="5" type="1" body="y" />'
            "</smses>"
        )
        messages = parse_messages_xml(xml)
        assert [m.body for m in messages] == ["y"]

    def test_missing_address_is_unknown(self):
        xml = '<smses><sms date="5" type="1" body="x" /></smses>'
        message = parse_messages_xml(xml)[0]
        assert message.phone == "UNKNOWN"
        assert message.phone_raw is None

    def test_malformed_xml(self):
        with pytest.raises(ArchiveFormatError):
            parse_messages_xml("<smses><sms address=")

    def test_wrong_root(self, calls_xml):
        with pytest.raises(ArchiveFormatError):
            parse_messages_xml(calls_xml)

    def test_empty_input(self):
        with pytest.raises(ArchiveFormatError):
            parse_messages_xml("")


class TestParseCallsXml:
    """Tests for call log parsing."""

    def test_empty_number_dropped(self, calls_xml):
        calls = parse_calls_xml(calls_xml)
        assert len(calls) == 3
        assert all(isinstance(c, Call) for c in calls)
        assert all(c.phone_raw for c in calls)

    def test_call_fields(self, calls_xml):
        first = parse_calls_xml(calls_xml)[0]
        assert first.phone == "+61412345678"
        assert first.call_type is CallType.INCOMING
        assert first.call_type_code == 1
        assert first.duration == 65
        assert first.timestamp == 1700000300000
        assert first.contact_name == "Alice"
        assert first.subscription_id == "1"
        assert first.id == generate_call_id("+61412345678", 1700000300000, 1, 65)

    def test_call_types(self, calls_xml):
        types = [c.call_type for c in parse_calls_xml(calls_xml)]
        assert types == [CallType.INCOMING, CallType.MISSED, CallType.OUTGOING]

    @pytest.mark.parametrize(
        "code,expected",
        [
            (1, CallType.INCOMING),
            (2, CallType.OUTGOING),
            (3, CallType.MISSED),
            (4, CallType.VOICEMAIL),
            (5, CallType.REJECTED),
            (6, CallType.BLOCKED),
            (0, CallType.UNKNOWN),
            (42, CallType.UNKNOWN),
            (None, CallType.UNKNOWN),
        ],
    )
    def test_call_type_from_code(self, code, expected):
        assert CallType.from_code(code) is expected

    def test_missing_duration_defaults_to_zero(self):
        xml = '<calls><call number="0412345678" date="5" type="3" /></calls>'
        assert parse_calls_xml(xml)[0].duration == 0

    def test_negative_duration_clamped(self):
        xml = '<calls><call number="0412345678" duration="-4" date="5" type="1" /></calls>'
        assert parse_calls_xml(xml)[0].duration == 0

    def test_single_call(self):
        xml = '<calls count="1"><call number="0412345678" duration="1" date="5" type="2" /></calls>'
        assert len(parse_calls_xml(xml)) == 1

    def test_wrong_root(self, messages_xml):
        with pytest.raises(ArchiveFormatError):
            parse_calls_xml(messages_xml)


class TestParseArchive:
    """Tests for sniff-and-dispatch."""

    def test_messages(self, messages_xml):
        kind, records = parse_archive(messages_xml)
        assert kind is ArchiveKind.MESSAGES
        assert len(records) == 4

    def test_calls_bytes(self, calls_xml):
        kind, records = parse_archive(calls_xml.encode("utf-8"))
        assert kind is ArchiveKind.CALLS
        assert len(records) == 3

    def test_no_marker(self):
        with pytest.raises(ArchiveFormatError):
            parse_archive("<contacts><contact /></contacts>")
