"""
Archive validation module.

Checks that archive.db is internally consistent after ingestion. Since the
phones table is a cache, most checks compare it against live scans of the
record tables; a failing aggregate check is repaired by rebuild_phone_stats.

Validation Checks:
    1. Phone aggregates match live COUNT/MAX scans
    2. Every phone with activity has an aggregate row
    3. Every subscription id in the data is registered
    4. Numeric phone keys are E.164
    5. ETL state is valid
"""

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
import logging

from phone_archive.database import ArchiveStore

logger = logging.getLogger(__name__)

# E.164 phone format regex
E164_PATTERN = re.compile(r"^\+\d{7,15}$")

# ISO-8601 date format regex (basic)
ISO8601_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}Z?$")

# Sample size for failure details
DETAIL_SAMPLE = 5


@dataclass
class ValidationCheck:
    """Result of a single validation check."""

    name: str
    passed: bool
    message: str
    details: Optional[str] = None


@dataclass
class ValidationResult:
    """Result of all validation checks."""

    passed: bool
    checks: List[ValidationCheck] = field(default_factory=list)
    summary: str = ""

    def __str__(self) -> str:
        lines = []
        for check in self.checks:
            icon = "✓" if check.passed else "✗"
            lines.append(f"{icon} {check.name}: {check.message}")
            if check.details and not check.passed:
                lines.append(f"  → {check.details}")

        status = "All checks passed" if self.passed else "Some checks failed"
        lines.append(f"\n{status}.")
        return "\n".join(lines)


def check_phone_aggregates(store: ArchiveStore) -> ValidationCheck:
    """
    Verify every phones row equals a fresh scan of messages and calls.

    Args:
        store: Connected archive store.

    Returns:
        ValidationCheck result.
    """
    query = """
        SELECT phone FROM (
            SELECT
                p.phone,
                p.message_count,
                p.last_message_at,
                p.call_count,
                p.last_call_at,
                (SELECT COUNT(*) FROM messages m WHERE m.phone = p.phone) AS live_message_count,
                (SELECT MAX(timestamp) FROM messages m WHERE m.phone = p.phone) AS live_last_message_at,
                (SELECT COUNT(*) FROM calls c WHERE c.phone = p.phone) AS live_call_count,
                (SELECT MAX(timestamp) FROM calls c WHERE c.phone = p.phone) AS live_last_call_at
            FROM phones p
        )
        WHERE message_count IS NOT live_message_count
           OR last_message_at IS NOT live_last_message_at
           OR call_count IS NOT live_call_count
           OR last_call_at IS NOT live_last_call_at
        ORDER BY phone;
    """
    stale = [row["phone"] for row in store.fetch_all(query)]
    total = store.fetch_scalar("SELECT COUNT(*) FROM phones;") or 0

    passed = not stale
    message = (
        f"{total} aggregates match live scans"
        if passed
        else f"{len(stale)} of {total} aggregates are stale"
    )

    return ValidationCheck(
        name="Phone aggregates",
        passed=passed,
        message=message,
        details=f"Stale: {', '.join(stale[:DETAIL_SAMPLE])}" if not passed else None,
    )


def check_orphan_phones(store: ArchiveStore) -> ValidationCheck:
    """
    Verify every phone with messages or calls has an aggregate row.

    Args:
        store: Connected archive store.

    Returns:
        ValidationCheck result.
    """
    query = """
        SELECT phone FROM messages
        UNION
        SELECT phone FROM calls
        EXCEPT
        SELECT phone FROM phones
        ORDER BY phone;
    """
    missing = [row["phone"] for row in store.fetch_all(query)]

    passed = not missing
    message = "All active phones aggregated" if passed else f"{len(missing)} phones missing"

    return ValidationCheck(
        name="No orphan phones",
        passed=passed,
        message=message,
        details=f"Missing: {', '.join(missing[:DETAIL_SAMPLE])}" if not passed else None,
    )


def check_subscriptions_registered(store: ArchiveStore) -> ValidationCheck:
    """
    Verify every subscription id found in the data is registered.

    Args:
        store: Connected archive store.

    Returns:
        ValidationCheck result.
    """
    query = """
        SELECT subscription_id FROM messages WHERE subscription_id IS NOT NULL
        UNION
        SELECT subscription_id FROM calls WHERE subscription_id IS NOT NULL
        EXCEPT
        SELECT subscription_id FROM subscriptions
        ORDER BY subscription_id;
    """
    unregistered = [row["subscription_id"] for row in store.fetch_all(query)]

    passed = not unregistered
    message = (
        "All subscriptions registered"
        if passed
        else f"{len(unregistered)} unregistered subscriptions"
    )

    return ValidationCheck(
        name="Subscriptions registered",
        passed=passed,
        message=message,
        details="Run subscription discovery" if not passed else None,
    )


def check_normalization_quality(store: ArchiveStore) -> ValidationCheck:
    """
    Verify dialable phone keys are E.164.

    Alphanumeric sender IDs and short codes are not expected to be E.164;
    only keys starting with '+' are checked.

    Args:
        store: Connected archive store.

    Returns:
        ValidationCheck result.
    """
    phones = [
        row["phone"]
        for row in store.fetch_all("SELECT phone FROM phones WHERE phone LIKE '+%';")
    ]

    if not phones:
        return ValidationCheck(
            name="Phone normalization",
            passed=True,
            message="No dialable phones to validate",
        )

    valid_count = sum(1 for phone in phones if E164_PATTERN.match(phone))
    total = len(phones)
    percentage = valid_count / total * 100

    # Foreign numbers with odd punctuation are kept verbatim
    passed = percentage >= 90

    return ValidationCheck(
        name="Phone normalization",
        passed=passed,
        message=f"{percentage:.1f}% E.164 compliant ({valid_count}/{total})",
        details=f"{total - valid_count} phones not in E.164 format" if not passed else None,
    )


def check_etl_state(store: ArchiveStore) -> ValidationCheck:
    """
    Verify ETL state contains valid sync information.

    Args:
        store: Connected archive store.

    Returns:
        ValidationCheck result.
    """
    state = {row["key"]: row["value"] for row in store.fetch_all("SELECT key, value FROM etl_state;")}

    required_keys = ["schema_version", "last_sync"]
    missing = [k for k in required_keys if k not in state]

    if missing:
        return ValidationCheck(
            name="ETL state",
            passed=False,
            message=f"Missing required keys: {missing}",
        )

    if not ISO8601_PATTERN.match(state["last_sync"]):
        return ValidationCheck(
            name="ETL state",
            passed=False,
            message=f"Invalid last_sync format: {state['last_sync']}",
        )

    return ValidationCheck(
        name="ETL state",
        passed=True,
        message=f"Last sync: {state['last_sync']}",
    )


def validate_store(store: ArchiveStore) -> ValidationResult:
    """
    Run all validation checks against an open store.

    Args:
        store: Connected archive store.

    Returns:
        ValidationResult with every check.
    """
    checks = [
        check_phone_aggregates(store),
        check_orphan_phones(store),
        check_subscriptions_registered(store),
        check_normalization_quality(store),
        check_etl_state(store),
    ]

    passed = all(check.passed for check in checks)
    failed = [check.name for check in checks if not check.passed]
    summary = "All checks passed" if passed else f"Failed: {', '.join(failed)}"

    logger.info(f"Validation: {summary}")
    return ValidationResult(passed=passed, checks=checks, summary=summary)


def validate_archive(db_path: Path) -> ValidationResult:
    """
    Run all validation checks against archive.db.

    Args:
        db_path: Path to archive.db.

    Returns:
        ValidationResult; a missing database fails with a single check.
    """
    if not db_path.exists():
        check = ValidationCheck(
            name="Database exists",
            passed=False,
            message=f"{db_path} not found",
        )
        return ValidationResult(passed=False, checks=[check], summary="Database not found")

    with ArchiveStore(db_path) as store:
        return validate_store(store)
