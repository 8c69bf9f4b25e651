"""
Read-side queries for archive.db.

Paginated accessors by phone, by id and by device subscription. Every
function takes a connected ArchiveStore and returns plain dict rows ready
for JSON serialization.
"""

from typing import Any, Dict, List, Optional

from phone_archive.database import ArchiveStore

# Upper bound on any page, whatever the caller asks for
MAX_PAGE_SIZE = 500
DEFAULT_PAGE_SIZE = 100

# SQLite's multi-argument MAX() is NULL if any argument is NULL
LAST_ACTIVITY_SQL = "MAX(COALESCE(last_message_at, 0), COALESCE(last_call_at, 0))"


def clamp_limit(limit: Optional[int]) -> int:
    """Clamp a requested page size into 1..MAX_PAGE_SIZE."""
    if limit is None:
        return DEFAULT_PAGE_SIZE
    return max(1, min(int(limit), MAX_PAGE_SIZE))


def clamp_offset(offset: Optional[int]) -> int:
    """Negative or missing offsets start at the first row."""
    return max(0, int(offset or 0))


def _subscription_filter(subscription_id: Optional[str]) -> str:
    return " AND subscription_id = :subscription_id" if subscription_id else ""


def get_phones(
    store: ArchiveStore, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
) -> List[Dict[str, Any]]:
    """
    Get phone aggregates, most recently active first.

    Args:
        store: Connected archive store.
        limit: Page size (clamped to MAX_PAGE_SIZE).
        offset: Rows to skip.

    Returns:
        List of phones rows.
    """
    return store.fetch_all(
        f"""
        SELECT * FROM phones
        ORDER BY {LAST_ACTIVITY_SQL} DESC, phone
        LIMIT ? OFFSET ?;
        """,
        (clamp_limit(limit), clamp_offset(offset)),
    )


def get_phone(store: ArchiveStore, phone: str) -> Optional[Dict[str, Any]]:
    """Get the aggregate row of one normalized phone."""
    return store.fetch_one("SELECT * FROM phones WHERE phone = ?;", (phone,))


def get_messages_by_phone(
    store: ArchiveStore,
    phone: str,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
    subscription_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Get messages exchanged with a normalized phone, newest first.

    Args:
        store: Connected archive store.
        phone: Normalized phone key.
        limit: Page size (clamped to MAX_PAGE_SIZE).
        offset: Rows to skip.
        subscription_id: Optional device line filter.

    Returns:
        List of messages rows.
    """
    return store.fetch_all(
        f"""
        SELECT * FROM messages
        WHERE phone = :phone{_subscription_filter(subscription_id)}
        ORDER BY timestamp DESC
        LIMIT :limit OFFSET :offset;
        """,
        {
            "phone": phone,
            "subscription_id": subscription_id,
            "limit": clamp_limit(limit),
            "offset": clamp_offset(offset),
        },
    )


def get_message_by_id(store: ArchiveStore, message_id: str) -> Optional[Dict[str, Any]]:
    """Get one message by content id."""
    return store.fetch_one("SELECT * FROM messages WHERE id = ?;", (message_id,))


def get_calls(
    store: ArchiveStore, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
) -> List[Dict[str, Any]]:
    """Get calls across all phones, newest first."""
    return store.fetch_all(
        "SELECT * FROM calls ORDER BY timestamp DESC LIMIT ? OFFSET ?;",
        (clamp_limit(limit), clamp_offset(offset)),
    )


def get_calls_by_phone(
    store: ArchiveStore,
    phone: str,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
    subscription_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    Get calls with a normalized phone, newest first.

    Args:
        store: Connected archive store.
        phone: Normalized phone key.
        limit: Page size (clamped to MAX_PAGE_SIZE).
        offset: Rows to skip.
        subscription_id: Optional device line filter.

    Returns:
        List of calls rows.
    """
    return store.fetch_all(
        f"""
        SELECT * FROM calls
        WHERE phone = :phone{_subscription_filter(subscription_id)}
        ORDER BY timestamp DESC
        LIMIT :limit OFFSET :offset;
        """,
        {
            "phone": phone,
            "subscription_id": subscription_id,
            "limit": clamp_limit(limit),
            "offset": clamp_offset(offset),
        },
    )


def get_call_by_id(store: ArchiveStore, call_id: str) -> Optional[Dict[str, Any]]:
    """Get one call by content id."""
    return store.fetch_one("SELECT * FROM calls WHERE id = ?;", (call_id,))


def get_phone_history(
    store: ArchiveStore,
    phone: str,
    subscription_id: Optional[str] = None,
    limit: int = DEFAULT_PAGE_SIZE,
    offset: int = 0,
) -> Dict[str, Any]:
    """
    Get messages and calls with a phone, each paginated separately.

    Args:
        store: Connected archive store.
        phone: Normalized phone key.
        subscription_id: Optional device line filter.
        limit: Page size applied to messages and to calls.
        offset: Rows to skip in each list.

    Returns:
        Dictionary with 'messages', 'calls' and 'counts' (totals over the
        whole history, not just the page).
    """
    params = {"phone": phone, "subscription_id": subscription_id}
    where = f"WHERE phone = :phone{_subscription_filter(subscription_id)}"

    message_count = store.fetch_scalar(f"SELECT COUNT(*) FROM messages {where};", params) or 0
    call_count = store.fetch_scalar(f"SELECT COUNT(*) FROM calls {where};", params) or 0

    return {
        "messages": get_messages_by_phone(store, phone, limit, offset, subscription_id),
        "calls": get_calls_by_phone(store, phone, limit, offset, subscription_id),
        "counts": {
            "messages": message_count,
            "calls": call_count,
            "total": message_count + call_count,
        },
    }


def get_activity_timestamps(store: ArchiveStore, phone: Optional[str] = None) -> List[int]:
    """
    Get the timestamps of every message and call, oldest first.

    Args:
        store: Connected archive store.
        phone: Optional normalized phone key to restrict to.

    Returns:
        Epoch-millisecond timestamps.
    """
    where = "WHERE phone = :phone" if phone else ""
    rows = store.fetch_all(
        f"""
        SELECT timestamp FROM messages {where}
        UNION ALL
        SELECT timestamp FROM calls {where}
        ORDER BY timestamp;
        """,
        {"phone": phone},
    )
    return [row["timestamp"] for row in rows]


def _subscription_row(row: Dict[str, Any]) -> Dict[str, Any]:
    row["is_active"] = bool(row["is_active"])
    return row


def get_subscriptions(store: ArchiveStore, active_only: bool = True) -> List[Dict[str, Any]]:
    """
    Get registered device subscriptions.

    Args:
        store: Connected archive store.
        active_only: Hide deactivated subscriptions.

    Returns:
        List of subscriptions rows ordered by id.
    """
    query = "SELECT * FROM subscriptions"
    if active_only:
        query += " WHERE is_active = 1"
    query += " ORDER BY subscription_id;"
    return [_subscription_row(row) for row in store.fetch_all(query)]


def get_subscription(store: ArchiveStore, subscription_id: str) -> Optional[Dict[str, Any]]:
    """Get one subscription, active or not."""
    row = store.fetch_one(
        "SELECT * FROM subscriptions WHERE subscription_id = ?;", (subscription_id,)
    )
    return _subscription_row(row) if row else None
