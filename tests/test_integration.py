"""
End-to-end tests across parsing, loading, aggregates and queries.
"""

import pytest

from phone_archive.database import ArchiveStore
from phone_archive.etl.loaders import discover_subscriptions, rebuild_phone_stats
from phone_archive.etl.pipeline import ingest_archive, ingest_forwarded_sms
from phone_archive.etl.validation import validate_store
from phone_archive.queries import get_phone, get_phone_history, get_phones


def _aggregates(store: ArchiveStore):
    return [
        {key: value for key, value in row.items() if key != "updated_at"}
        for row in get_phones(store)
    ]


@pytest.mark.integration
class TestFullIngest:
    def test_archives_then_validation(self, populated_store: ArchiveStore):
        discover_subscriptions(populated_store)

        result = validate_store(populated_store)

        assert result.passed, str(result)

    def test_same_phone_across_archives(self, populated_store: ArchiveStore):
        phone = get_phone(populated_store, "+61412345678")

        assert phone["message_count"] == 2
        assert phone["call_count"] == 2
        assert phone["display_name"] == "Alice"
        assert phone["last_call_at"] == 1700000400000

        history = get_phone_history(populated_store, "+61412345678")
        assert history["counts"] == {"messages": 2, "calls": 2, "total": 4}

    def test_rebuild_matches_incremental(self, populated_store: ArchiveStore):
        before = _aggregates(populated_store)

        rebuild_phone_stats(populated_store)

        assert _aggregates(populated_store) == before

    def test_reingest_and_webhook_keep_aggregates_consistent(
        self, populated_store: ArchiveStore, messages_xml: str
    ):
        again = ingest_archive(populated_store, messages_xml)
        inserted, _ = ingest_forwarded_sms(
            populated_store, "0412 345 678", "New one", timestamp=1700001000000
        )

        assert again.inserted == 0
        assert inserted is True
        assert get_phone(populated_store, "+61412345678")["message_count"] == 3

        discover_subscriptions(populated_store)
        assert validate_store(populated_store).passed
